import pytest
import requests

from sec_balance_sheet import SEC_BROWSE_URL, SEC_TICKERS_URL, RateLimiter, SecClient

ARCHIVE = "https://www.sec.gov/Archives/edgar/data/320193"
DIR_Q3 = f"{ARCHIVE}/000032019325000073/index.json"
DIR_Q2 = f"{ARCHIVE}/000032019325000057/index.json"
SUMMARY_Q3 = f"{ARCHIVE}/000032019325000073/FilingSummary.xml"
SUMMARY_Q2 = f"{ARCHIVE}/000032019325000057/FilingSummary.xml"

FEED_XML = f"""<?xml version="1.0" encoding="ISO-8859-1" ?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>APPLE INC.  (0000320193)</title>
  <entry>
    <category label="form type" scheme="https://www.sec.gov/" term="10-Q"/>
    <link rel="alternate" type="text/html" href="{ARCHIVE}/000032019325000073/0000320193-25-000073-index.htm"/>
    <title>10-Q  - Quarterly report [Sections 13 or 15(d)]</title>
  </entry>
  <entry>
    <category label="form type" scheme="https://www.sec.gov/" term="10-Q"/>
    <link rel="alternate" type="text/html" href="{ARCHIVE}/000032019325000057/0000320193-25-000057-index.htm"/>
    <title>10-Q  - Quarterly report [Sections 13 or 15(d)]</title>
  </entry>
</feed>
"""

EMPTY_FEED_XML = """<?xml version="1.0" encoding="ISO-8859-1" ?>
<feed xmlns="http://www.w3.org/2005/Atom"><title>No filings</title></feed>
"""

DIRECTORY_JSON = """{
  "directory": {
    "item": [
      {"last-modified": "2025-08-01 06:01:32", "name": "0000320193-25-000073-index-headers.html", "type": "text.gif", "size": ""},
      {"last-modified": "2025-08-01 06:01:32", "name": "FilingSummary.xml", "type": "text.gif", "size": "61234"},
      {"last-modified": "2025-08-01 06:01:32", "name": "R2.htm", "type": "text.gif", "size": "40123"}
    ],
    "name": "/Archives/edgar/data/320193/000032019325000073",
    "parent-dir": "/Archives/edgar/data/320193"
  }
}
"""

DIRECTORY_NO_SUMMARY_JSON = """{
  "directory": {
    "item": [
      {"name": "0000320193-25-000073.txt"},
      {"name": "filingsummary.xml"}
    ],
    "name": "/Archives/edgar/data/320193/000032019325000073"
  }
}
"""

SUMMARY_XML = """<?xml version="1.0" encoding="utf-8"?>
<FilingSummary>
  <Version>3.25.2</Version>
  <MyReports>
    <Report instance="aapl-20250628.htm">
      <IsDefault>false</IsDefault>
      <HtmlFileName>R1.htm</HtmlFileName>
      <LongName>0000001 - Document - Cover Page</LongName>
      <ShortName>Cover Page</ShortName>
    </Report>
    <Report instance="aapl-20250628.htm">
      <HtmlFileName>R2.htm</HtmlFileName>
      <ShortName>CONDENSED CONSOLIDATED STATEMENTS OF OPERATIONS (Unaudited)</ShortName>
    </Report>
    <Report instance="aapl-20250628.htm">
      <HtmlFileName>R4.htm</HtmlFileName>
      <XmlFileName>R4.xml</XmlFileName>
      <ShortName>CONDENSED CONSOLIDATED BALANCE SHEETS (Unaudited)</ShortName>
    </Report>
    <Report instance="aapl-20250628.htm">
      <XmlFileName>R5.xml</XmlFileName>
      <ShortName>CONDENSED CONSOLIDATED BALANCE SHEETS (Parenthetical)</ShortName>
    </Report>
    <Report instance="aapl-20250628.htm">
      <ShortName>Revenue</ShortName>
    </Report>
    <Report instance="aapl-20250628.htm">
      <IsDefault>false</IsDefault>
      <HtmlFileName>aapl-20250628.htm</HtmlFileName>
      <LongName>All Reports</LongName>
      <ShortName>All Reports</ShortName>
      <ReportType>Book</ReportType>
    </Report>
  </MyReports>
</FilingSummary>
"""

BALANCE_SHEET_HTML = """<html><head><title></title></head><body>
<table class="report" border="0" cellspacing="2">
  <tr>
    <th class="tl" colspan="1" rowspan="1"><div style="width: 200px;"><strong>CONDENSED CONSOLIDATED BALANCE SHEETS<br/>(Unaudited) - USD ($)<br/> $ in Millions</strong></div></th>
    <th class="th"><div>Jun. 28, 2025</div></th>
  </tr>
  <tr class="re">
    <td class="pl"><a title="us-gaap_AssetsCurrentAbstract"><strong>Current assets:</strong></a></td>
    <td class="text">&#160;</td>
    <td class="text">&#160;</td>
  </tr>
  <tr class="rou">
    <td class="pl"><a title="us-gaap_CashAndCashEquivalentsAtCarryingValue">Cash and cash equivalents</a></td>
    <td class="nump">$ 36,269</td>
    <td class="nump">$ 29,943</td>
  </tr>
  <tr class="re">
    <td class="pl"><a>Total <i>current</i>   assets</a></td>
    <td class="nump">122,502</td>
    <td class="nump">152,987</td>
  </tr>
</table>
<table><tr><td>Footnote table</td></tr></table>
</body></html>
"""

TICKERS_TXT = "aapl\t320193\nmsft\t789019\nbrk-b\t1067983\n"


class FakeResponse:
    def __init__(self, url, text, status_code=200):
        self.url = url
        self.text = text
        self.content = text.encode("utf-8")
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error for url: {self.url}", response=self)


class FakeSession:
    """Serves canned bodies keyed by URL; unknown URLs answer 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.headers = {}
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        body = self.routes.get(url)
        if isinstance(body, Exception):
            raise body
        if body is None:
            return FakeResponse(url, "Not Found", status_code=404)
        return FakeResponse(url, body)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def routes():
    return {
        SEC_TICKERS_URL: TICKERS_TXT,
        SEC_BROWSE_URL: FEED_XML,
        DIR_Q3: DIRECTORY_JSON,
        SUMMARY_Q3: SUMMARY_XML,
        f"{ARCHIVE}/000032019325000073/R4.htm": BALANCE_SHEET_HTML,
    }


@pytest.fixture
def make_client(clock):
    def _make(routes, limit=10):
        session = FakeSession(routes)
        limiter = RateLimiter(limit, clock=clock, sleep=clock.sleep)
        return SecClient("Test Suite tests@example.com", timeout=5, session=session, limiter=limiter)

    return _make
