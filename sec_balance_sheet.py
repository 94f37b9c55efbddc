#!/usr/bin/env python3
import argparse
import datetime as dt
import json
import logging
import os
import threading
import time
import xml.etree.ElementTree as ET
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup, FeatureNotFound

log = logging.getLogger(__name__)

SEC_BROWSE_URL = "https://www.sec.gov/cgi-bin/browse-edgar"
SEC_TICKERS_URL = "https://www.sec.gov/include/ticker.txt"

DEFAULT_TIMEOUT = 40
DEFAULT_RATE_LIMIT = 10
DEFAULT_MAX_BYTES = 25 * 1024 * 1024
WINDOW_SECONDS = 1.0

FILING_SUMMARY = "FilingSummary.xml"
FILING_TYPE = "10-Q"
FEED_PAGE_SIZE = "100"

# Banks and brokers file a "statement of financial condition" instead
BALANCE_SHEET_KEYWORDS = ("balance sheets", "financial condition")

EMPHASIS_TAGS = ["b", "strong"]


class SecError(Exception):
    pass


class NetworkError(SecError):
    pass


class ParseError(SecError):
    pass


class SchemaError(SecError):
    pass


class NotFoundError(SecError):
    pass


@dataclass
class RateWindow:
    window_start: float
    count: int
    limit: int


@dataclass(frozen=True)
class FilingEntry:
    directory_url: str


@dataclass(frozen=True)
class DirectoryItem:
    name: str


@dataclass(frozen=True)
class DirectoryManifest:
    directory_name: str
    items: List[DirectoryItem]


@dataclass(frozen=True)
class ReportDescriptor:
    short_name: str
    document_url: str


@dataclass
class StatementTable:
    headers: List[List[str]] = field(default_factory=list)
    sections: List[str] = field(default_factory=list)
    data: List[List[str]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.headers or self.sections or self.data)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FilingResult:
    directory_url: str
    summary_url: Optional[str] = None
    report_url: Optional[str] = None
    statement: Optional[StatementTable] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "directoryUrl": self.directory_url,
            "summaryUrl": self.summary_url,
            "reportUrl": self.report_url,
            "statement": self.statement.to_dict() if self.statement else None,
            "error": self.error,
        }


class RateLimiter:
    def __init__(
        self,
        limit: int = DEFAULT_RATE_LIMIT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if int(limit) <= 0:
            raise ValueError(f"limit must be > 0, got {limit}")
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self.window = RateWindow(window_start=clock(), count=0, limit=int(limit))

    def wait(self) -> float:
        waited = 0.0
        with self._lock:
            w = self.window
            elapsed = self._clock() - w.window_start
            if elapsed >= WINDOW_SECONDS:
                w.window_start = self._clock()
                w.count = 0
            elif w.count >= w.limit:
                waited = max(0.0, WINDOW_SECONDS - elapsed)
                log.debug("rate window exhausted (%d/%d), sleeping %.3fs", w.count, w.limit, waited)
                self._sleep(waited)
                w.window_start = self._clock()
                w.count = 0
            w.count += 1
        return waited


class SecClient:
    def __init__(
        self,
        user_agent: str,
        timeout: int = DEFAULT_TIMEOUT,
        rate_limit: int = DEFAULT_RATE_LIMIT,
        max_bytes: int = DEFAULT_MAX_BYTES,
        session: Optional[requests.Session] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        ua = (user_agent or "").strip()
        if not ua:
            raise ValueError('User-Agent with contact info is required, e.g. "app (email@domain)".')
        self.session = session if session is not None else requests.Session()
        self.session.headers.update(
            {
                "User-Agent": ua,
                "Accept": "application/json, text/html, application/xml;q=0.9, */*;q=0.8",
                "Accept-Encoding": "gzip, deflate",
            }
        )
        self.timeout = int(timeout)
        self.rl = limiter if limiter is not None else RateLimiter(rate_limit)
        self.max_bytes = int(max_bytes)

    def fetch(self, url: str, params: Optional[Dict[str, str]] = None) -> str:
        self.rl.wait()
        log.debug("GET %s params=%s", url, params)
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Failed to fetch {url}: {e}") from e
        if len(r.content) > self.max_bytes:
            raise NetworkError(f"Response too large ({len(r.content)} bytes): {url}")
        return r.text


def make_soup(html: str) -> BeautifulSoup:
    for parser in ("lxml", "html.parser"):
        try:
            return BeautifulSoup(html, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(html, "html.parser")


def _local(tag: str) -> str:
    # Atom feeds carry a default namespace: "{http://www.w3.org/2005/Atom}entry"
    return tag.rsplit("}", 1)[-1]


def _parse_xml(text: str, what: str) -> ET.Element:
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise ParseError(f"Malformed {what}: {e}") from e


def parse_ticker_directory(text: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        cols = line.split("\t")
        if len(cols) < 2:
            raise SchemaError(
                f"Ticker table line {lineno} has {len(cols)} column(s), expected 2. "
                "The SEC usually answers this way when the User-Agent header was rejected; "
                "check SEC_UA / --user-agent."
            )
        out[cols[0].strip().lower()] = cols[1].strip()
    return out


def load_ticker_directory(client: SecClient) -> Dict[str, str]:
    return parse_ticker_directory(client.fetch(SEC_TICKERS_URL))


def lookup_cik(directory: Dict[str, str], ticker: str) -> str:
    cik = directory.get((ticker or "").strip().lower())
    if not cik:
        raise NotFoundError(f"Unknown ticker: {ticker}")
    return cik


def filing_index_params(ticker: str, as_of: Union[str, dt.date, None]) -> Dict[str, str]:
    if isinstance(as_of, dt.date):
        dateb = as_of.strftime("%Y%m%d")
    else:
        dateb = (as_of or "").strip()
    return {
        "action": "getcompany",
        "ticker": ticker,
        "type": FILING_TYPE,
        "dateb": dateb,
        "owner": "exclude",
        "start": "",
        "output": "atom",
        "count": FEED_PAGE_SIZE,
    }


def normalize_filing_link(href: str) -> str:
    # .../320193/000032019325000073/0000320193-25-000073-index.htm leaves the
    # accession twice once hyphens go, so a ten-segment path drops segment 7
    url = href.replace("-index.html", "/index.json").replace("-index.htm", "/index.json")
    url = url.replace("-", "")
    parts = url.split("/")
    if len(parts) == 10:
        del parts[7]
        url = "/".join(parts)
    return url


def parse_filing_feed(feed_xml: str) -> List[FilingEntry]:
    root = _parse_xml(feed_xml, "filing feed")
    entries: List[FilingEntry] = []
    for node in root.iter():
        if _local(node.tag) != "entry":
            continue
        href = ""
        for child in node:
            if _local(child.tag) == "link":
                href = (child.get("href") or "").strip()
                break
        if not href:
            log.warning("feed entry without a link, skipped")
            continue
        entries.append(FilingEntry(directory_url=normalize_filing_link(href)))
    return entries


def resolve_filing_index(client: SecClient, ticker: str, as_of: Union[str, dt.date, None] = "") -> List[str]:
    feed = client.fetch(SEC_BROWSE_URL, params=filing_index_params(ticker, as_of))
    return [e.directory_url for e in parse_filing_feed(feed)]


def parse_directory_manifest(text: str) -> DirectoryManifest:
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Malformed directory manifest: {e}") from e

    directory = doc.get("directory") if isinstance(doc, dict) else None
    if not isinstance(directory, dict):
        raise SchemaError("Directory manifest has no 'directory' object.")
    name = directory.get("name")
    if not isinstance(name, str):
        raise SchemaError("Directory manifest has no 'directory.name'.")
    items = directory.get("item")
    if not isinstance(items, list):
        raise SchemaError("Directory manifest has no 'directory.item' list.")

    return DirectoryManifest(
        directory_name=name,
        items=[DirectoryItem(name=str(it.get("name") or "")) for it in items if isinstance(it, dict)],
    )


def find_filing_summary(manifest: DirectoryManifest, host: str) -> Optional[str]:
    for it in manifest.items:
        if it.name == FILING_SUMMARY:
            return f"https://{host}/{manifest.directory_name.strip('/')}/{FILING_SUMMARY}"
    return None


def resolve_filing_summary_url(client: SecClient, directory_url: str) -> Optional[str]:
    manifest = parse_directory_manifest(client.fetch(directory_url))
    host = urlparse(directory_url).netloc or "www.sec.gov"
    return find_filing_summary(manifest, host)


def summary_base_url(summary_url: str) -> str:
    if summary_url.endswith(FILING_SUMMARY):
        return summary_url[: -len(FILING_SUMMARY)]
    return summary_url


def parse_filing_summary(summary_xml: str, summary_url: str) -> List[ReportDescriptor]:
    root = _parse_xml(summary_xml, "filing summary")
    my_reports = root if root.tag == "MyReports" else root.find(".//MyReports")
    if my_reports is None:
        raise SchemaError("Filing summary has no MyReports element.")

    reports = my_reports.findall("Report")
    # The last entry points back at the containing document
    if len(reports) > 1:
        reports = reports[:-1]

    base = summary_base_url(summary_url)
    out: List[ReportDescriptor] = []
    for rep in reports:
        short = (rep.findtext("ShortName") or "").strip()
        fname = (rep.findtext("HtmlFileName") or "").strip() or (rep.findtext("XmlFileName") or "").strip()
        out.append(ReportDescriptor(short_name=short, document_url=base + fname if fname else ""))
    return out


def resolve_reports(client: SecClient, summary_url: str) -> List[ReportDescriptor]:
    return parse_filing_summary(client.fetch(summary_url), summary_url)


def select_statement(descriptors: Iterable[ReportDescriptor], keywords: Sequence[str] = BALANCE_SHEET_KEYWORDS) -> str:
    kws = [k.lower() for k in keywords if k]
    for d in descriptors:
        name = d.short_name.lower()
        if not any(k in name for k in kws):
            continue
        if not d.document_url:
            log.info("report %r matched but has no document file, skipped", d.short_name)
            continue
        log.info("picked report %r -> %s", d.short_name, d.document_url)
        return d.document_url
    raise NotFoundError(f"No report matched any of {list(kws)}.")


def _cell_text(cell) -> str:
    return cell.get_text(" ", strip=True).replace("\u00a0", " ").strip()


def _has_emphasis(cells) -> bool:
    for c in cells:
        for b in c.find_all(EMPHASIS_TAGS):
            if b.find_parent("table") is c.find_parent("table"):
                return True
    return False


def extract_statement_table(html: str) -> StatementTable:
    out = StatementTable()
    table = make_soup(html).find("table")
    if table is None:
        log.warning("no <table> element in report document")
        return out

    # rows of tables nested inside a cell belong to that inner table
    rows = [tr for tr in table.find_all("tr") if tr.find_parent("table") is table]
    for i, tr in enumerate(rows):
        th_cells = tr.find_all("th", recursive=False)
        td_cells = tr.find_all("td", recursive=False)

        if th_cells:
            out.headers.append([_cell_text(c) for c in th_cells])
        elif td_cells and _has_emphasis(td_cells):
            out.sections.append(_cell_text(td_cells[0]))
        elif td_cells:
            out.data.append([_cell_text(c) for c in td_cells])
        else:
            log.debug("row %d has no th/td cells, skipped: %r", i, tr.get_text(" ", strip=True)[:120])
    return out


def process_filing(client: SecClient, directory_url: str, keywords: Sequence[str] = BALANCE_SHEET_KEYWORDS) -> Optional[FilingResult]:
    summary_url = resolve_filing_summary_url(client, directory_url)
    if summary_url is None:
        log.info("no %s under %s, skipped", FILING_SUMMARY, directory_url)
        return None

    result = FilingResult(directory_url=directory_url, summary_url=summary_url)
    report_url = select_statement(resolve_reports(client, summary_url), keywords)
    result.report_url = report_url
    result.statement = extract_statement_table(client.fetch(report_url))
    return result


def run_pipeline(
    client: SecClient,
    ticker: str,
    as_of: Union[str, dt.date, None] = "",
    limit: int = 1,
    keywords: Sequence[str] = BALANCE_SHEET_KEYWORDS,
) -> List[FilingResult]:
    results: List[FilingResult] = []
    found = 0
    for directory_url in resolve_filing_index(client, ticker, as_of):
        try:
            res = process_filing(client, directory_url, keywords)
        except (ParseError, SchemaError, NotFoundError) as e:
            log.warning("%s: %s", directory_url, e)
            results.append(FilingResult(directory_url=directory_url, error=f"{type(e).__name__}: {e}"))
            continue
        if res is None:
            continue
        results.append(res)
        found += 1
        if limit > 0 and found >= limit:
            break
    return results


def main() -> None:
    ap = argparse.ArgumentParser(description="Ticker -> 10-Q filings -> balance sheet table (EDGAR R*.htm).")
    ap.add_argument("--ticker", required=True, help="Stock ticker, e.g. AAPL.")
    ap.add_argument("--date", default="", help="Only filings on or before this date (YYYYMMDD).")
    ap.add_argument("--limit", type=int, default=1, help="Stop after this many balance sheets (0 = all).")
    ap.add_argument("--keyword", action="append", default=None, help="Report-name keyword (repeatable).")
    ap.add_argument("--user-agent", default=os.getenv("SEC_UA", ""), help="User-Agent with contact info.")
    ap.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT)
    ap.add_argument("--rate-limit", type=int, default=DEFAULT_RATE_LIMIT, help="Requests per second.")
    ap.add_argument("--max-bytes", type=int, default=DEFAULT_MAX_BYTES)
    ap.add_argument("--skip-ticker-check", action="store_true", help="Do not look the ticker up first.")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    ua = (args.user_agent or "").strip()
    if not ua:
        raise SystemExit('Provide --user-agent "app (email@domain)" or set SEC_UA env var.')

    client = SecClient(ua, timeout=args.timeout, rate_limit=args.rate_limit, max_bytes=args.max_bytes)
    keywords = tuple(args.keyword) if args.keyword else BALANCE_SHEET_KEYWORDS

    try:
        if not args.skip_ticker_check:
            cik = lookup_cik(load_ticker_directory(client), args.ticker)
            log.info("ticker %s -> CIK %s", args.ticker, cik)
        results = run_pipeline(client, args.ticker, args.date, limit=args.limit, keywords=keywords)
    except SecError as e:
        raise SystemExit(f"{type(e).__name__}: {e}")

    print(
        json.dumps(
            {"ticker": args.ticker, "asOf": args.date, "filings": [r.to_dict() for r in results]},
            ensure_ascii=False,
            indent=2,
        )
    )
    if not any(r.statement is not None for r in results):
        raise SystemExit("No balance sheet found for the requested filings.")


if __name__ == "__main__":
    main()
