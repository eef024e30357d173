"""
Plain-HTTP access to the PJN portal.

* SCW JSF search without a browser: walk the SSO redirects by hand keeping
  the cookie jar as ``name=value`` strings, pull ``javax.faces.ViewState``
  out of the form and POST the search.
* Notifications ("eventos") API: paginated JSON and per-event PDFs.

A redirect where the portal should answer directly means the session was
bounced to the SSO, which is reported as ``AuthRequiredError``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx

from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger
from pjn_sync.db.schemas import SessionState
from pjn_sync.utils.case_keys import JURISDICTION_VALUE_MAP, build_case_key
from pjn_sync.utils.exceptions import AuthRequiredError, ScrapeError

MAX_REDIRECTS = 10
SEARCH_FORM_ID = "j_idt83:consultaExpediente"

_VIEW_STATE = re.compile(r'name="javax\.faces\.ViewState"[^>]*value="([^"]+)"', re.IGNORECASE)
_VIEW_STATE_ALT = re.compile(r'value="([^"]+)"[^>]*name="javax\.faces\.ViewState"', re.IGNORECASE)

_HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"


@dataclass
class ScwSession:
    cookies: List[str]
    view_state: str
    html: str


@dataclass
class SearchPage:
    fre: str
    html: str
    cookies: List[str]


@dataclass
class EventsPage:
    events: List[Dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    total_pages: Optional[int] = None


def extract_view_state(html: str) -> Optional[str]:
    match = _VIEW_STATE.search(html or "") or _VIEW_STATE_ALT.search(html or "")
    return match.group(1) if match else None


def merge_cookies(existing: List[str], set_cookie_headers: List[str]) -> List[str]:
    """Later values win per cookie name; attributes after ``;`` are dropped."""
    jar: Dict[str, str] = {}
    for raw in list(existing) + list(set_cookie_headers):
        name_value = raw.split(";", 1)[0].strip()
        name, sep, _ = name_value.partition("=")
        if sep and name.strip():
            jar[name.strip()] = name_value
    return list(jar.values())


def has_scw_session_cookie(cookies: List[str]) -> bool:
    return any(c.strip().startswith("JSESSIONID=") or "scw" in c for c in cookies)


def build_search_form(jurisdiction: str, case_number: str, year: int | str, view_state: str) -> Dict[str, str]:
    code = jurisdiction.strip().upper()
    camara = JURISDICTION_VALUE_MAP.get(code)
    if camara is None:
        raise ScrapeError(f"Unknown jurisdiction code: {jurisdiction}")
    return {
        SEARCH_FORM_ID: SEARCH_FORM_ID,
        f"{SEARCH_FORM_ID}:camara": camara,
        f"{SEARCH_FORM_ID}:j_idt116:numero": str(case_number),
        f"{SEARCH_FORM_ID}:j_idt118:anio": str(year),
        f"{SEARCH_FORM_ID}:caratula": "",
        f"{SEARCH_FORM_ID}:situation": "",
        f"{SEARCH_FORM_ID}:consultaFiltroSearchButtonSAU": "Consultar",
        "javax.faces.ViewState": view_state,
    }


class ScwHttpClient:
    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(settings.PJN_REQUEST_TIMEOUT_SECONDS, connect=settings.PJN_CONNECT_TIMEOUT_SECONDS),
            follow_redirects=False,
            transport=self._transport,
        )

    @staticmethod
    def _browser_headers(session: SessionState) -> Dict[str, str]:
        headers = {
            "Accept": _HTML_ACCEPT,
            "Accept-Language": session.headers.get("Accept-Language", "es-AR,es;q=0.9,en;q=0.8"),
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }
        if session.headers.get("User-Agent"):
            headers["User-Agent"] = session.headers["User-Agent"]
        return headers

    # ── JSF search ───────────────────────────────────────────────────────────

    def establish_scw_session(self, client: httpx.Client, session: SessionState, fre: str) -> ScwSession:
        cookies = list(session.cookies)
        url = settings.scw_search_url if has_scw_session_cookie(cookies) else settings.scw_sso_auth_url
        headers = self._browser_headers(session)

        for redirect_count in range(MAX_REDIRECTS + 1):
            response = client.get(url, headers={**headers, "Cookie": "; ".join(cookies)})
            cookies = merge_cookies(cookies, response.headers.get_list("set-cookie"))

            if response.is_redirect:
                location = response.headers.get("location")
                if not location:
                    raise ScrapeError("Redirect without location header")
                url = urljoin(url, location)
                logger.debug("SCW session following redirect", extra={"location": url, "redirect_count": redirect_count + 1})
                continue

            if response.status_code >= 400:
                raise ScrapeError(f"SCW session failed with status {response.status_code}")

            view_state = extract_view_state(response.text)
            if view_state:
                logger.info("SCW session established", extra={"fre": fre, "final_url": url, "redirect_count": redirect_count})
                return ScwSession(cookies=cookies, view_state=view_state, html=response.text)

            # Some logins land on homePrivado.seam, which has no search form.
            logger.info("ViewState missing, retrying on the search page", extra={"fre": fre, "from_url": url})
            fallback = client.get(settings.scw_search_url, headers={**headers, "Cookie": "; ".join(cookies)})
            cookies = merge_cookies(cookies, fallback.headers.get_list("set-cookie"))
            if fallback.is_redirect:
                raise AuthRequiredError("Session expired or invalid")
            view_state = extract_view_state(fallback.text) if fallback.status_code < 400 else None
            if not view_state:
                raise ScrapeError("ViewState not found in SCW page")
            return ScwSession(cookies=cookies, view_state=view_state, html=fallback.text)

        raise ScrapeError(f"Too many redirects ({MAX_REDIRECTS}) establishing SCW session")

    def search(self, session: SessionState, jurisdiction: str, case_number: str, year: int) -> SearchPage:
        fre = build_case_key(jurisdiction, case_number, year) or f"{jurisdiction.upper()}-{case_number}/{year}"
        if not session.cookies:
            logger.warning("Case history search attempted without PJN cookies", extra={"fre": fre})
            raise AuthRequiredError("Session expired or invalid")

        try:
            with self._client() as client:
                scw = self.establish_scw_session(client, session, fre)
                body = build_search_form(jurisdiction, case_number, year, scw.view_state)
                response = client.post(
                    settings.scw_search_url,
                    data=body,
                    headers={
                        **self._browser_headers(session),
                        "Cookie": "; ".join(scw.cookies),
                        "Referer": settings.scw_search_url,
                    },
                )
        except httpx.TimeoutException as e:
            logger.error("PJN case history search timeout", extra={"fre": fre})
            raise ScrapeError(f"Request timeout after {settings.PJN_REQUEST_TIMEOUT_SECONDS}s") from e
        except httpx.HTTPError as e:
            logger.error("PJN case history search request error", extra={"fre": fre, "error": str(e)})
            raise ScrapeError(str(e)) from e

        if response.is_redirect:
            logger.warning("PJN case history search redirected", extra={"location": response.headers.get("location")})
            raise AuthRequiredError("Session expired or invalid")
        if response.status_code >= 400:
            raise ScrapeError(f"Case history search failed with status {response.status_code}")

        cookies = merge_cookies(scw.cookies, response.headers.get_list("set-cookie"))
        return SearchPage(fre=fre, html=response.text, cookies=cookies)

    # ── Events API ───────────────────────────────────────────────────────────

    def _api_headers(self, session: Optional[SessionState]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if session is not None:
            headers.update(session.headers)
            if session.cookies:
                headers["Cookie"] = session.cookie_header()
        return headers

    def _api_get(self, path: str, session: Optional[SessionState], params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url = f"{settings.PJN_API_BASE_URL}{path}"
        try:
            with self._client() as client:
                response = client.get(url, params=params, headers=self._api_headers(session))
        except httpx.TimeoutException as e:
            logger.error("PJN API request timeout", extra={"endpoint": path})
            raise ScrapeError(f"Request timeout after {settings.PJN_REQUEST_TIMEOUT_SECONDS}s") from e
        except httpx.HTTPError as e:
            logger.error("PJN API request failed", extra={"endpoint": path, "error": str(e)})
            raise ScrapeError(str(e)) from e

        if response.is_redirect:
            logger.warning(
                "PJN API redirect detected",
                extra={"endpoint": path, "status_code": response.status_code, "location": response.headers.get("location")},
            )
            raise AuthRequiredError("Session expired or invalid")
        return response

    def fetch_events(
        self,
        session: Optional[SessionState],
        page: int = 0,
        page_size: Optional[int] = None,
        categoria: Optional[str] = None,
        fecha_desde: Optional[str] = None,
        fecha_hasta: Optional[str] = None,
    ) -> EventsPage:
        page_size = page_size or settings.EVENTS_PAGE_SIZE
        params: Dict[str, Any] = {"page": page, "pageSize": page_size}
        if categoria:
            params["categoria"] = categoria
        if fecha_desde:
            params["fechaDesde"] = fecha_desde
        if fecha_hasta:
            params["fechaHasta"] = fecha_hasta

        response = self._api_get(settings.PJN_EVENTS_ENDPOINT, session, params)
        if response.status_code >= 400:
            raise ScrapeError(f"Failed to fetch events: {response.status_code}")

        data = response.json() if "json" in response.headers.get("content-type", "") else {}
        events = [e for e in (data.get("eventos") or []) if isinstance(e, dict)]
        total_pages = data.get("totalPaginas")
        if total_pages is not None:
            has_more = page + 1 < int(total_pages)
        else:
            has_more = len(events) == page_size
        return EventsPage(events=events, has_more=has_more, total_pages=total_pages)

    def download_event_pdf(self, event_id: str, session: Optional[SessionState]) -> Optional[bytes]:
        path = settings.PJN_PDF_ENDPOINT.replace("{event_id}", event_id)
        response = self._api_get(path, session)
        if response.status_code >= 400:
            logger.warning("Failed to download PDF", extra={"event_id": event_id, "status_code": response.status_code})
            return None
        content_type = response.headers.get("content-type", "")
        if "pdf" not in content_type and "octet-stream" not in content_type:
            logger.warning("Unexpected content type for PDF", extra={"event_id": event_id, "content_type": content_type})
        return response.content or None


scw_http_client = ScwHttpClient()
