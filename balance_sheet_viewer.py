#!/usr/bin/env python3
import html
import logging
import os
import threading
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import HTMLResponse, Response

from sec_balance_sheet import (
    DEFAULT_RATE_LIMIT,
    DEFAULT_TIMEOUT,
    FilingResult,
    NetworkError,
    NotFoundError,
    ParseError,
    SchemaError,
    SecClient,
    run_pipeline,
)

log = logging.getLogger(__name__)

app = FastAPI()

# One client per process: every request draws from the same rate window.
_client: Optional[SecClient] = None
_client_lock = threading.Lock()

STYLE = """
  body { margin:0; background:#0b0d10; color:#e9eef5; font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto, Arial; }
  .wrap { max-width: 1200px; margin:0 auto; padding: 24px 16px 40px; }
  h1 { font-size:18px; margin:0 0 6px; }
  h2 { font-size:14px; margin:18px 0 8px; color:#a6b2c2; }
  .subtitle { color:#a6b2c2; font-size:13px; margin-bottom:14px; }
  .subtitle a, a.back { color:#6ea8ff; text-decoration:none; }
  .card { background:#0f1318; border:1px solid #1c2530; border-radius:16px; overflow:hidden; }
  table { width:100%; border-collapse:collapse; }
  thead th { background:#0c1117; text-align:right; padding:10px 12px; border-bottom:1px solid #1c2530; color:#a6b2c2; font-weight:600; font-size:12px; }
  thead th:first-child, tbody td:first-child { text-align:left; }
  tbody td { padding:8px 12px; border-bottom:1px solid #1c2530; font-size:13px; text-align:right; }
  ul.sections { margin:0; padding:10px 28px; font-size:13px; }
  input, button { background:#0f1318; color:#e9eef5; border:1px solid #1c2530; padding:8px 10px; border-radius:10px; font-size:13px; }
"""


def get_client() -> SecClient:
    global _client
    with _client_lock:
        if _client is None:
            ua = os.getenv("SEC_UA", "").strip()
            if not ua:
                raise HTTPException(status_code=500, detail="SEC_UA is not set.")
            _client = SecClient(
                ua,
                timeout=int(os.getenv("SEC_TIMEOUT", DEFAULT_TIMEOUT)),
                rate_limit=int(os.getenv("SEC_RATE_LIMIT", DEFAULT_RATE_LIMIT)),
            )
        return _client


def _first_statement(client: SecClient, ticker: str, date: str) -> FilingResult:
    try:
        results = run_pipeline(client, ticker, date, limit=1)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (NetworkError, ParseError, SchemaError) as e:
        log.warning("pipeline failed for %s: %s", ticker, e)
        raise HTTPException(status_code=502, detail=f"{type(e).__name__}: {e}")

    for r in results:
        if r.statement is not None:
            return r
    errors = [r.error for r in results if r.error]
    # every candidate broke upstream rather than lacking a balance sheet
    upstream = bool(errors) and not any(e.startswith(NotFoundError.__name__) for e in errors)
    raise HTTPException(
        status_code=502 if upstream else 404,
        detail=f"No balance sheet found for {ticker}. {'; '.join(errors)}".strip(),
    )


def _render_table(result: FilingResult, ticker: str) -> str:
    st = result.statement
    width = max([len(r) for r in st.headers + st.data] or [0])

    thead: List[str] = []
    for hr in st.headers:
        cells = "".join(f"<th>{html.escape(c)}</th>" for c in hr)
        thead.append(f"<tr>{cells}</tr>")

    tbody: List[str] = []
    for row in st.data:
        padded = row + [""] * (width - len(row))
        cells = "".join(f"<td>{html.escape(c)}</td>" for c in padded)
        tbody.append(f"<tr>{cells}</tr>")

    sections = "".join(f"<li>{html.escape(s)}</li>" for s in st.sections)
    source = html.escape(result.report_url or "")

    return f"""<!doctype html>
<html lang="en"><head><meta charset="utf-8"/><meta name="viewport" content="width=device-width, initial-scale=1"/>
<title>{html.escape(ticker.upper())} • Balance Sheet</title>
<style>{STYLE}</style>
</head><body>
  <div class="wrap">
    <h1>{html.escape(ticker.upper())} • Balance Sheet</h1>
    <div class="subtitle">Source: <a href="{source}">{source}</a> • <a class="back" href="/">Back</a></div>
    <div class="card">
      <table>
        <thead>{''.join(thead)}</thead>
        <tbody>{''.join(tbody)}</tbody>
      </table>
    </div>
    <h2>Sections</h2>
    <div class="card"><ul class="sections">{sections or '<li>None</li>'}</ul></div>
  </div>
</body></html>
"""


@app.get("/", response_class=HTMLResponse)
def index() -> str:
    return f"""<!doctype html>
<html><head><meta charset="utf-8"/><title>EDGAR Balance Sheets</title><style>{STYLE}</style></head>
<body><div class="wrap">
  <h1>EDGAR Balance Sheets</h1>
  <div class="subtitle">Latest 10-Q balance sheet on or before a date (YYYYMMDD, optional).</div>
  <form onsubmit="location.href='/bs/'+encodeURIComponent(this.t.value)+'?date='+encodeURIComponent(this.d.value); return false;">
    <input name="t" placeholder="Ticker" required/>
    <input name="d" placeholder="YYYYMMDD"/>
    <button type="submit">Open</button>
  </form>
</div></body></html>
"""


@app.get("/bs/{ticker}", response_class=HTMLResponse)
def view_balance_sheet(ticker: str, date: str = "", client: SecClient = Depends(get_client)) -> str:
    return _render_table(_first_statement(client, ticker, date), ticker)


@app.get("/api/bs/{ticker}")
def balance_sheet_json(ticker: str, date: str = "", client: SecClient = Depends(get_client)) -> dict:
    return _first_statement(client, ticker, date).to_dict()


@app.get("/favicon.ico")
def favicon():
    return Response(status_code=204)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("VIEWER_HOST", "127.0.0.1"), port=int(os.getenv("VIEWER_PORT", "8000")))
