import os
import json
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

from flask import Flask, Response, request, jsonify
from flask_cors import CORS
import requests

# ----------------------
# Configuration
# ----------------------
DEFAULT_API_URL = "https://api.airtable.com/v0"
TRUTHY = {"1", "true", "yes", "on"}

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("airtable-proxy")


@dataclass(frozen=True)
class Config:
    """Credentials and settings for one invocation."""

    api_key: str = ""
    base_id: str = ""
    api_url: str = DEFAULT_API_URL
    verbose: bool = False
    timeout: Optional[float] = None

    @classmethod
    def from_env(cls) -> "Config":
        timeout = os.getenv("AIRTABLE_TIMEOUT")
        return cls(
            api_key=os.getenv("AIRTABLE_API_KEY", ""),
            base_id=os.getenv("AIRTABLE_BASE_ID", ""),
            api_url=os.getenv("AIRTABLE_API_URL", DEFAULT_API_URL),
            verbose=os.getenv("PROXY_VERBOSE", "").strip().lower() in TRUTHY,
            timeout=parse_timeout(timeout),
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key) and bool(self.base_id)

    @property
    def base_url(self) -> str:
        return f"{self.api_url.rstrip('/')}/{self.base_id}"


def parse_timeout(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"AIRTABLE_TIMEOUT must be a number of seconds, got {raw!r}") from None


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Content-Type": "application/json",
}


@dataclass
class ProxyRequest:
    method: str
    query: Mapping[str, str] = field(default_factory=dict)
    body: Optional[str] = None


@dataclass
class ProxyResponse:
    status_code: int
    body: str = ""
    headers: Dict[str, str] = field(default_factory=lambda: dict(CORS_HEADERS))

    def json(self) -> Any:
        return json.loads(self.body)


class ProxyError(Exception):
    """A failure that maps onto a specific status code."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# ----------------------
# Helpers
# ----------------------
def encode_component(value: Any) -> str:
    """Percent-encode a path or query component like encodeURIComponent."""
    return quote(str(value), safe="-_.!~*'()")


def json_response(status_code: int, payload: Any) -> ProxyResponse:
    return ProxyResponse(status_code, json.dumps(payload))


def upstream_headers(config: Config) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {config.api_key}",
        "Content-Type": "application/json",
    }


def call_upstream(config: Config, method: str, url: str, payload: Any = None):
    """Send one request to the upstream API, return (status, decoded JSON)."""
    if config.verbose:
        logger.info("Sending to Airtable: %s %s", method, url)
    resp = requests.request(
        method,
        url,
        headers=upstream_headers(config),
        json=payload,
        timeout=config.timeout,
    )
    if config.verbose:
        logger.info("Airtable %s response status: %s", method, resp.status_code)
        logger.info("Airtable %s response body: %s", method, resp.text)
    return resp.status_code, resp.json()


# ----------------------
# Operations
# ----------------------
def list_rows(config: Config, query: Mapping[str, str]) -> ProxyResponse:
    table = query.get("table")
    filter_formula = query.get("filter")
    if not table:
        raise ProxyError("table parameter required", 400)

    url = f"{config.base_url}/{encode_component(table)}"
    if filter_formula:
        url += f"?filterByFormula={encode_component(filter_formula)}"

    status, data = call_upstream(config, "GET", url)
    if not isinstance(data, dict):
        logger.error("Airtable list for %r returned %s instead of an object", table, type(data).__name__)
        raise ProxyError(f"Unexpected Airtable response: {json.dumps(data)}", 500)
    if status >= 400:
        logger.warning("Airtable list for %r returned %s, relaying empty rows", table, status)
    if data.get("offset"):
        logger.warning("Airtable list for %r has more pages, only the first is returned", table)
    return json_response(200, data.get("records") or [])


def save_row(config: Config, method: str, raw_body: Optional[str]) -> ProxyResponse:
    body = json.loads(raw_body or "{}")
    if not isinstance(body, dict):
        body = {}
    table = body.get("table")
    fields = body.get("fields")
    record_id = body.get("id")

    if config.verbose:
        logger.info("Table: %s", table)
        logger.info("Fields: %s", json.dumps(fields))

    if not table or not isinstance(fields, dict):
        raise ProxyError("table and fields required", 400)

    url = f"{config.base_url}/{encode_component(table)}"
    if record_id:
        url += f"/{encode_component(record_id)}"
        outbound = "PATCH"
    else:
        outbound = "POST"
        if method == "PATCH":
            logger.info("PATCH without id for %r, creating a new row", table)

    status, data = call_upstream(config, outbound, url, {"fields": fields})
    return json_response(status, data)


def handle(req: ProxyRequest, config: Config) -> ProxyResponse:
    """Serve one proxied request."""
    method = (req.method or "").upper()

    if method == "OPTIONS":
        return ProxyResponse(200, "")

    if config.verbose:
        logger.info("API_KEY present: %s", bool(config.api_key))
        logger.info("BASE_ID present: %s", bool(config.base_id))

    if not config.has_credentials:
        logger.error("Missing Airtable credentials")
        return json_response(500, {"error": "Missing Airtable credentials in environment variables."})

    try:
        if method == "GET":
            return list_rows(config, req.query or {})
        if method in ("POST", "PATCH"):
            return save_row(config, method, req.body)
        return json_response(405, {"error": "Method not allowed"})
    except ProxyError as e:
        return json_response(e.status_code, {"error": e.message})
    except Exception as e:
        logger.exception("Proxy request failed: %s", e)
        return json_response(500, {"error": str(e)})


def serve(build_request) -> ProxyResponse:
    """Build the request and load config, reporting failures as JSON 500s."""
    try:
        req = build_request()
        config = Config() if (req.method or "").upper() == "OPTIONS" else Config.from_env()
    except Exception as e:
        logger.exception("Could not prepare proxy request: %s", e)
        return json_response(500, {"error": str(e)})
    return handle(req, config)


# ----------------------
# App Setup
# ----------------------
app = Flask(__name__)
CORS(app, origins="*", allow_headers=["Content-Type"])

PROXY_METHODS = ["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"]


# ----------------------
# Endpoints
# ----------------------
@app.route("/", methods=["GET"])
def health_check():
    return jsonify({"status": "proxy-running"}), 200


@app.route("/api/airtable", methods=PROXY_METHODS)
@app.route("/.netlify/functions/airtable", methods=PROXY_METHODS)
def airtable_proxy():
    resp = serve(
        lambda: ProxyRequest(
            method=request.method,
            query=request.args.to_dict(),
            body=request.get_data(as_text=True) or None,
        )
    )
    return Response(resp.body, status=resp.status_code, headers=resp.headers)


# ----------------------
# Serverless entry point
# ----------------------
def handler(event, context=None):
    """Lambda/Netlify style entry point."""

    def build_request():
        body = event.get("body")
        if body and event.get("isBase64Encoded"):
            body = base64.b64decode(body).decode("utf-8")
        return ProxyRequest(
            method=event.get("httpMethod", ""),
            query=event.get("queryStringParameters") or {},
            body=body,
        )

    resp = serve(build_request)
    return {"statusCode": resp.status_code, "headers": resp.headers, "body": resp.body}


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
