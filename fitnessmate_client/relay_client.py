#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os, io, sys, json, base64, argparse, time
from typing import Dict, Any, Optional

import requests
from PIL import Image
from dotenv import load_dotenv

load_dotenv()

PROXY_URL = os.getenv("PROXY_URL", "http://127.0.0.1:5501/api/myapi")
PROXY_CLIENT_TOKEN = os.getenv("PROXY_CLIENT_TOKEN", "")
DEFAULT_MODEL_NAME = os.getenv("PROXY_DEFAULT_MODEL", "")

IMG_MAX_DIM = int(os.getenv("IMG_MAX_DIM", "1280"))
IMG_JPEG_QUALITY = int(os.getenv("IMG_JPEG_QUALITY", "90"))
HTTP_CONNECT_TIMEOUT = float(os.getenv("PROXY_CONNECT_TIMEOUT", "10"))
HTTP_READ_TIMEOUT = float(os.getenv("PROXY_READ_TIMEOUT", "130"))
MAX_RETRIES = int(os.getenv("PROXY_RETRIES", "3"))
BACKOFF_BASE = float(os.getenv("PROXY_BACKOFF_BASE", "0.7"))

_TRANSIENT = {408, 429, 500, 502, 503, 504}

def encode_image(path: str, max_dim: int = IMG_MAX_DIM, quality: int = IMG_JPEG_QUALITY) -> str:
    """Downscale to max_dim, re-encode as JPEG and return base64 text."""
    with Image.open(path) as im:
        im = im.convert("RGB")
        im.thumbnail((max_dim, max_dim))
        buf = io.BytesIO(); im.save(buf, format="JPEG", quality=quality, optimize=True)
    return base64.b64encode(buf.getvalue()).decode("ascii")

def build_request(prompt: str, model: str = "", max_tokens: Optional[int] = None,
                  temperature: Optional[float] = None, image_url: str = "",
                  image_base64: str = "") -> Dict[str, Any]:
    if model:
        # full form goes through the proxy untouched
        body: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens or 300,
            "temperature": 0.2 if temperature is None else temperature,
        }
    else:
        body = {"prompt": prompt}
        if max_tokens: body["max_tokens"] = max_tokens
        if temperature is not None: body["temperature"] = temperature
    if image_url: body["image_url"] = image_url
    if image_base64: body["image_base64"] = image_base64
    return body

def call_proxy(payload: Dict[str, Any], url: str = PROXY_URL, token: str = PROXY_CLIENT_TOKEN,
               retries: int = MAX_RETRIES, backoff_base: float = BACKOFF_BASE) -> Optional[Any]:
    headers = {"Accept":"application/json","Content-Type":"application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    timeouts = (HTTP_CONNECT_TIMEOUT, HTTP_READ_TIMEOUT)
    for attempt in range(1, retries+1):
        try:
            with requests.post(url, headers=headers, json=payload, timeout=timeouts) as resp:
                if resp.status_code in _TRANSIENT:
                    raise requests.HTTPError(f"Transient {resp.status_code}: {resp.text[:200]}")
                if resp.status_code >= 400:
                    print(f"Proxy error {resp.status_code}: {resp.text[:500]}", file=sys.stderr)
                    return None
                return resp.json()
        except (requests.exceptions.ReadTimeout,
                requests.exceptions.ConnectTimeout,
                requests.exceptions.ConnectionError,
                requests.exceptions.ChunkedEncodingError,
                requests.HTTPError) as e:
            print(f"  attempt {attempt}/{retries} failed: {e}", file=sys.stderr)
            if attempt == retries:
                return None
            time.sleep(backoff_base*(2**(attempt-1)))
        except ValueError:
            print("Proxy replied with non-JSON body", file=sys.stderr)
            return None
    return None

def extract_reply(obj: Any) -> Optional[str]:
    if not isinstance(obj, dict): return None
    if "raw" in obj and "choices" not in obj: return str(obj["raw"])
    choices = obj.get("choices") or [{}]
    msg = (choices[0] or {}).get("message", {}) or {}
    content = msg.get("content", "")
    if isinstance(content, list):
        return " ".join([c.get("text","") for c in content if isinstance(c, dict) and c.get("type")=="text"]).strip()
    return str(content) if content is not None else None

def main():
    ap = argparse.ArgumentParser(description="Ask the FitnessMate relay a question")
    ap.add_argument("--prompt", type=str, required=True)
    ap.add_argument("--image", type=str, default="", help="local image, sent as image_base64")
    ap.add_argument("--image-url", type=str, default="")
    ap.add_argument("--model", type=str, default=DEFAULT_MODEL_NAME)
    ap.add_argument("--max-tokens", type=int, default=None)
    ap.add_argument("--temperature", type=float, default=None)
    ap.add_argument("--url", type=str, default=PROXY_URL)
    ap.add_argument("--raw", action="store_true", help="print the full JSON reply")
    args = ap.parse_args()
    image_b64 = encode_image(args.image) if args.image else ""
    payload = build_request(args.prompt, args.model, args.max_tokens, args.temperature,
                            args.image_url, image_b64)
    obj = call_proxy(payload, url=args.url)
    if obj is None:
        sys.exit(1)
    if args.raw:
        print(json.dumps(obj, ensure_ascii=False, indent=2)); return
    reply = extract_reply(obj)
    print(reply if reply is not None else json.dumps(obj, ensure_ascii=False))

if __name__ == "__main__":
    main()
