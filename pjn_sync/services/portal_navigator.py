"""
Playwright driver for the SCW portal.

The portal keeps JSF view state on the server, so one user never runs two
navigations at once: every public entry point takes that user's lock and
opens its own browser seeded with the stored session cookies.

Protocol for a full docket:
    search page -> expand filters -> fill camara/numero/anio -> Consultar
    -> collect every results page -> pick one candidate -> open expediente
    -> actuaciones (paginated) -> Doc. digitales -> Intervinientes
    -> Recursos -> Vinculados (paginated) -> download referenced PDFs
"""
from __future__ import annotations

import json
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger
from pjn_sync.db.schemas import (
    CaseHistoryDetails,
    CaseHistoryStats,
    NormalizedCaseCandidate,
    SessionState,
)
from pjn_sync.services import pjn_parsers
from pjn_sync.services.candidate_selector import CandidateSelection, select_candidate
from pjn_sync.services.document_pipeline import DocumentPipeline, document_pipeline
from pjn_sync.utils.case_keys import JURISDICTION_VALUE_MAP, build_case_key, parse_case_key, safe_key
from pjn_sync.utils.exceptions import AuthRequiredError, CaseNotFoundError, ScrapeError

# ── Selectors ────────────────────────────────────────────────────────────────

EXPAND_FILTER_SELECTORS = [
    'a:has-text("Personalizar Resultados")',
    'a[data-toggle="collapse"][href="#collapseOne"]',
    'a.btn-filter[data-toggle="collapse"]',
]
SEARCH_FORM_SELECTOR = 'form[id="j_idt83:consultaExpediente"], form[name="j_idt83:consultaExpediente"]'
CAMARA_SELECT = 'select[name="j_idt83:consultaExpediente:camara"]'
NUMERO_INPUT = 'input[name="j_idt83:consultaExpediente:j_idt116:numero"]'
ANIO_INPUT = 'input[name="j_idt83:consultaExpediente:j_idt118:anio"]'
SEARCH_BUTTON_SELECTORS = [
    'input[name="j_idt83:consultaExpediente:consultaFiltroSearchButtonSAU"]',
    'input[id*="consultaFiltroSearchButtonSAU"]',
    'input[type="submit"][value="Consultar"]',
    'button:has-text("Consultar")',
]
RESULTS_TABLE_SELECTORS = [
    'table[id*="dataTable"]',
    "#tablaConsultaLista\\:tablaConsultaForm\\:j_idt179\\:dataTable",
    "table.rf-dg",
]
RESULTS_PAGINATOR_SELECTORS = [
    "#tablaConsultaLista\\:tablaConsultaForm ul.pagination",
    "ul.pagination",
]
ROW_ACTION_SELECTORS = [
    "a.btn.btn-default.btn-sm",
    "a:has(i.fa-eye)",
    'a[onclick*="j_idt230"]',
    "div.btn-group a.btn",
]
NEXT_PAGE_SELECTORS = [
    "ul.pagination li.next:not(.disabled) a",
    'a[title="Siguiente"]',
    'a:has-text("Siguiente")',
    'ul.pagination li:not(.disabled) a:has-text("»")',
]

TAB_SELECTORS: Dict[str, List[str]] = {
    "digital_documents": [
        'a:has-text("Doc. digitales")',
        'a:has-text("Documentos digitales")',
        'a[id*="doc" i][id*="digital" i]',
        'a[href*="doc" i][href*="digital" i]',
        'button:has-text("Doc. digitales")',
        'li:has-text("Doc. digitales") a',
    ],
    "participants": [
        'a:has-text("Intervinientes")',
        'a[id*="intervinientes" i]',
        'a[href*="intervinientes" i]',
        'button:has-text("Intervinientes")',
        'li:has-text("Intervinientes") a',
    ],
    "appeals": [
        'a:has-text("Recursos")',
        'a[id*="recursos" i]',
        'a[href*="recursos" i]',
        'button:has-text("Recursos")',
        'li:has-text("Recursos") a',
    ],
    "related_cases": [
        'a:has-text("Vinculados")',
        'a[id*="vinculados" i]',
        'a[href*="vinculados" i]',
        'button:has-text("Vinculados")',
        'li:has-text("Vinculados") a',
    ],
}

LOGIN_URL_MARKERS = ("/protocol/openid-connect/auth", "/login", "login-actions")


# ── Per-user serialization ───────────────────────────────────────────────────

_user_locks: Dict[str, threading.Lock] = {}
_user_lock_holders: Dict[str, int] = {}
_user_locks_guard = threading.Lock()


@contextmanager
def user_lock(user_id: str) -> Iterator[None]:
    """Serialize work per user; the entry is dropped once nobody holds or waits on it."""
    with _user_locks_guard:
        lock = _user_locks.setdefault(user_id, threading.Lock())
        _user_lock_holders[user_id] = _user_lock_holders.get(user_id, 0) + 1
    try:
        with lock:
            yield
    finally:
        with _user_locks_guard:
            _user_lock_holders[user_id] -= 1
            if _user_lock_holders[user_id] == 0:
                del _user_lock_holders[user_id]
                del _user_locks[user_id]


# ── Raw markup archive ───────────────────────────────────────────────────────


class RawHtmlArchive:
    """Writes each step's markup and parsed output to disk when enabled."""

    def __init__(self, enabled: Optional[bool] = None, base_dir: Optional[str] = None):
        self.enabled = settings.RAW_HTML_ARCHIVE_ENABLED if enabled is None else enabled
        self.base_dir = Path(base_dir or settings.RAW_HTML_ARCHIVE_DIR)
        stamp = datetime.utcnow().strftime("%Y-%m-%d_%H-%M-%S")
        self.session_id = f"{stamp}_{uuid.uuid4().hex[:4]}"
        self.session_dir = self.base_dir / self.session_id

    def _write(self, filename: str, content: str) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            self.session_dir.mkdir(parents=True, exist_ok=True)
            path = self.session_dir / filename
            path.write_text(content, encoding="utf-8")
            return str(path)
        except OSError as e:
            logger.warning("Failed to archive raw markup", extra={"file": filename, "error": str(e)})
            return None

    def save_html(self, name: str, html: str) -> Optional[str]:
        return self._write(f"{name}.html", html)

    def save_json(self, name: str, data: Any) -> Optional[str]:
        return self._write(f"{name}.json", json.dumps(data, indent=2, default=str, ensure_ascii=False))


# ── Results ──────────────────────────────────────────────────────────────────


@dataclass
class SearchOutcome:
    fre: str
    candidates: List[NormalizedCaseCandidate]
    selection: CandidateSelection
    html: str
    cookies: List[str] = field(default_factory=list)


def _split_cookie(raw: str) -> Tuple[str, str]:
    name, _, value = raw.split(";", 1)[0].partition("=")
    return name.strip(), value.strip()


class PortalNavigator:
    def __init__(
        self,
        pipeline: Optional[DocumentPipeline] = None,
        headless: Optional[bool] = None,
    ):
        self.pipeline = pipeline or document_pipeline
        self.headless = settings.PLAYWRIGHT_HEADLESS if headless is None else headless

    # ── Browser lifecycle ────────────────────────────────────────────────────

    @contextmanager
    def open_page(self, session: SessionState) -> Iterator[Page]:
        """Fresh browser seeded with the session's cookies; closed on exit."""
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=self.headless)
                try:
                    context_args: Dict[str, Any] = {}
                    if session.headers.get("User-Agent"):
                        context_args["user_agent"] = session.headers["User-Agent"]
                    context = browser.new_context(**context_args)
                    cookies = []
                    for raw in session.cookies:
                        name, value = _split_cookie(raw)
                        if name:
                            cookies.append({"name": name, "value": value, "domain": settings.PJN_COOKIE_DOMAIN, "path": "/"})
                    if cookies:
                        context.add_cookies(cookies)
                    page = context.new_page()
                    page.set_default_navigation_timeout(settings.PLAYWRIGHT_NAVIGATION_TIMEOUT_MS)
                    yield page
                finally:
                    browser.close()
        except PlaywrightTimeoutError as e:
            raise ScrapeError(f"Portal navigation timed out: {e}") from e
        except PlaywrightError as e:
            raise ScrapeError(f"Browser automation failed: {e}") from e

    @staticmethod
    def _settle(page: Page, timeout: int = 10000) -> None:
        try:
            page.wait_for_load_state("networkidle", timeout=timeout)
        except PlaywrightTimeoutError:
            pass

    @staticmethod
    def ensure_authenticated(page: Page) -> None:
        url = page.url or ""
        if url.startswith(settings.PJN_SSO_BASE_URL) or any(m in url for m in LOGIN_URL_MARKERS):
            logger.warning("Portal redirected to login", extra={"url": url})
            raise AuthRequiredError("Session expired or invalid")

    @staticmethod
    def _first(page: Page, selectors: List[str]):
        for selector in selectors:
            locator = page.locator(selector).first
            if locator.count() > 0:
                return locator
        return None

    # ── Search ───────────────────────────────────────────────────────────────

    def navigate_to_search(self, page: Page) -> None:
        page.goto(settings.scw_search_url, wait_until="networkidle")
        self.ensure_authenticated(page)

    def _paginator(self, page: Page):
        return self._first(page, RESULTS_PAGINATOR_SELECTORS)

    def _page_link(self, page: Page, number: int):
        paginator = self._paginator(page)
        if paginator is None:
            return None
        items = paginator.locator("li:not(.active)")
        for i in range(items.count()):
            item = items.nth(i)
            if (item.text_content() or "").strip() == str(number):
                link = item.locator("a").first
                if link.count() > 0:
                    return link
        return None

    def _click_and_settle(self, page: Page, locator) -> None:
        locator.click()
        self._settle(page, 15000)
        page.wait_for_timeout(500)

    def search(
        self,
        page: Page,
        jurisdiction: str,
        case_number: str,
        year: int | str,
        target_key: Optional[str] = None,
        archive: Optional[RawHtmlArchive] = None,
    ) -> SearchOutcome:
        code = jurisdiction.strip().upper()
        fre = build_case_key(code, case_number, year) or f"{code}-{case_number}/{year}"
        camara = JURISDICTION_VALUE_MAP.get(code)
        if camara is None:
            raise ScrapeError(f"Unknown jurisdiction code: {jurisdiction}")

        logger.info("Starting portal case search", extra={"fre": fre})
        self.navigate_to_search(page)

        expand = self._first(page, EXPAND_FILTER_SELECTORS)
        if expand is not None:
            expand.click()
            page.wait_for_timeout(500)
        else:
            logger.warning("Could not find filter panel toggle, form may already be visible", extra={"fre": fre})

        try:
            page.wait_for_selector(SEARCH_FORM_SELECTOR, timeout=10000, state="visible")
        except PlaywrightTimeoutError:
            page.wait_for_selector('select[name*="camara"]', timeout=10000, state="visible")

        page.locator(CAMARA_SELECT).select_option(camara)
        page.locator(NUMERO_INPUT).fill(str(case_number))
        page.locator(ANIO_INPUT).fill(str(year))

        button = self._first(page, SEARCH_BUTTON_SELECTORS)
        if button is None:
            raise ScrapeError("Could not find search button")
        button.click()
        self._settle(page, settings.PLAYWRIGHT_NAVIGATION_TIMEOUT_MS)
        self.ensure_authenticated(page)

        for selector in RESULTS_TABLE_SELECTORS:
            try:
                page.wait_for_selector(selector, timeout=5000)
                break
            except PlaywrightTimeoutError:
                continue

        candidates: List[NormalizedCaseCandidate] = []
        current_page = 1
        html = ""
        while current_page <= settings.SEARCH_MAX_PAGES:
            html = page.content()
            if archive is not None:
                archive.save_html(f"{safe_key(fre)}_01_search_p{current_page}", html)
            result = pjn_parsers.parse_search_results(html, page=current_page)
            candidates.extend(result.records)
            logger.info(
                "Parsed search results page",
                extra={"fre": fre, "page": current_page, "page_count": len(result.records), "total": len(candidates)},
            )

            numbers = pjn_parsers.extract_page_numbers(html)
            next_page = current_page + 1
            if next_page not in numbers:
                break
            link = self._page_link(page, next_page)
            if link is None:
                logger.warning("Could not find link for next results page", extra={"fre": fre, "next_page": next_page})
                break
            try:
                self._click_and_settle(page, link)
            except PlaywrightError as e:
                logger.warning("Failed to open next results page", extra={"fre": fre, "error": str(e)})
                break
            current_page = next_page

        selection = select_candidate(target_key or fre, candidates, code, case_number, year)
        chosen = selection.selected
        if chosen is not None and chosen.page != current_page:
            link = self._page_link(page, chosen.page)
            if link is not None:
                try:
                    self._click_and_settle(page, link)
                    html = page.content()
                except PlaywrightError as e:
                    logger.warning("Failed to return to selected candidate page", extra={"fre": fre, "error": str(e)})

        if chosen is not None:
            logger.info(
                "Selected unambiguous candidate",
                extra={"fre": fre, "selected": chosen.fre, "row_index": chosen.row_index, "strategy": selection.strategy},
            )
        elif candidates:
            logger.warning(
                "Ambiguous or no match, no candidate selected",
                extra={
                    "fre": fre,
                    "candidate_count": len(candidates),
                    "exact_matches": selection.exact_matches_count,
                    "loose_matches": selection.loose_matches_count,
                },
            )

        if archive is not None:
            archive.save_json(
                f"{safe_key(fre)}_01_search_results",
                {"candidates": [c.model_dump() for c in candidates], "strategy": selection.strategy},
            )

        cookies = [f"{c['name']}={c['value']}" for c in page.context.cookies()]
        return SearchOutcome(fre=fre, candidates=candidates, selection=selection, html=html, cookies=cookies)

    # ── Expediente ───────────────────────────────────────────────────────────

    def open_expediente(self, page: Page, candidate: NormalizedCaseCandidate) -> Tuple[str, str]:
        """Click the candidate's row action; returns (markup, cid)."""
        action = page.locator(f'a[onclick*="dataTable:{candidate.row_index}:j_idt230"]').first
        if action.count() == 0:
            action = None
            rows = page.locator('table[id*="dataTable"]').first.locator("tbody tr")
            if 0 <= candidate.row_index < rows.count():
                row = rows.nth(candidate.row_index)
                for selector in ROW_ACTION_SELECTORS:
                    found = row.locator(selector).first
                    if found.count() > 0:
                        action = found
                        break
        if action is None:
            raise ScrapeError(f"Could not find or click action for row {candidate.row_index}")

        action.click()
        self._settle(page, settings.PLAYWRIGHT_NAVIGATION_TIMEOUT_MS)
        self.ensure_authenticated(page)

        url = page.url
        if "expediente.seam" not in url:
            raise ScrapeError(f"Navigation did not reach expediente.seam. Current URL: {url}")
        cid = (parse_qs(urlparse(url).query).get("cid") or [""])[0]
        logger.info("Opened expediente", extra={"fre": candidate.fre, "cid": cid})
        return page.content(), cid

    def _reopen_expediente(self, page: Page, cid: str) -> None:
        page.goto(f"{settings.scw_expediente_url}?cid={cid}", wait_until="networkidle")
        self.ensure_authenticated(page)

    def load_tab(self, page: Page, section: str, cid: str) -> str:
        """
        Click one of the expediente tabs and return the page markup. When the
        tab is missing or the click bounced us off the case view, reopen the
        case by ``cid`` and retry once; a second miss is a ``ScrapeError``.
        """
        for attempt in range(2):
            tab = self._first(page, TAB_SELECTORS[section])
            if tab is not None:
                tab.click()
                self._settle(page)
                self.ensure_authenticated(page)
                if "expediente.seam" in page.url or not cid:
                    return page.content()
            if not cid or attempt == 1:
                break
            logger.info(
                "Tab not reachable from the current view, reopening",
                extra={"section": section, "cid": cid, "tab_found": tab is not None},
            )
            self._reopen_expediente(page, cid)
        raise ScrapeError(f"Could not load {section} tab for cid {cid}")

    def _load_section(
        self, page: Page, section: str, cid: str, sections: Dict[str, pjn_parsers.ParseResult]
    ) -> Optional[str]:
        """Tab markup, or None with the section recorded as not found."""
        try:
            return self.load_tab(page, section, cid)
        except ScrapeError as e:
            logger.warning("Skipping section, tab unavailable", extra={"section": section, "error": e.message})
            sections[section] = pjn_parsers.NotFound(section, e.message)
            return None

    def collect_pages(
        self,
        page: Page,
        first_html: str,
        parse: Callable[[str], pjn_parsers.ParseResult],
        id_of: Callable[[Any], str],
        limit: Optional[int] = None,
    ) -> Tuple[List[Any], List[str]]:
        """Follow the section's next-page control, de-duplicating by stable id."""
        records: List[Any] = []
        pages = [first_html]
        seen = set()
        html = first_html
        for page_number in range(1, settings.TAB_MAX_PAGES + 1):
            added = 0
            for record in parse(html).records:
                key = id_of(record)
                if key in seen:
                    continue
                seen.add(key)
                records.append(record)
                added += 1
            if limit is not None and len(records) >= limit:
                break
            if added == 0 and page_number > 1:
                break
            if page_number == settings.TAB_MAX_PAGES:
                logger.warning("Stopped at the page cap", extra={"pages": page_number})
                break
            next_link = self._first(page, NEXT_PAGE_SELECTORS)
            if next_link is None:
                break
            try:
                self._click_and_settle(page, next_link)
            except PlaywrightError as e:
                logger.warning("Failed to follow next page", extra={"page": page_number, "error": str(e)})
                break
            html = page.content()
            pages.append(html)
        if limit is not None:
            records = records[:limit]
        return records, pages

    # ── Entry points ─────────────────────────────────────────────────────────

    def search_case(
        self,
        session: SessionState,
        user_id: str,
        jurisdiction: str,
        case_number: str,
        year: int,
    ) -> SearchOutcome:
        archive = RawHtmlArchive()
        with user_lock(user_id):
            with self.open_page(session) as page:
                return self.search(page, jurisdiction, case_number, year, archive=archive)

    def scrape_case_history_details(
        self,
        session: SessionState,
        case_key: str,
        user_id: str,
        include_movements: bool = True,
        include_documents: bool = True,
        include_participants: bool = True,
        include_appeals: bool = True,
        include_related_cases: bool = True,
        max_movements: Optional[int] = None,
        max_documents: Optional[int] = None,
        download_pdfs: bool = True,
    ) -> CaseHistoryDetails:
        started = time.monotonic()
        parsed_key = parse_case_key(case_key)
        if parsed_key is None:
            raise ScrapeError(f'Invalid FRE format: {case_key}. Expected format: "FRE-3852/2020"')
        fre = str(parsed_key)
        tag = safe_key(fre)
        archive = RawHtmlArchive()

        logger.info(
            "Starting case history details scrape",
            extra={"fre": fre, "user_id": user_id, "archive_session": archive.session_id if archive.enabled else None},
        )

        with user_lock(user_id):
            with self.open_page(session) as page:
                outcome = self.search(
                    page, parsed_key.jurisdiction, parsed_key.number, parsed_key.year, target_key=fre, archive=archive
                )
                candidate = outcome.selection.selected
                if candidate is None:
                    archive.save_json(f"{tag}_error", {"stage": "search", "candidates": len(outcome.candidates)})
                    raise CaseNotFoundError(f"No candidate found for FRE {fre}. Cannot navigate to expediente page.")

                expediente_html, cid = self.open_expediente(page, candidate)
                archive.save_html(f"{tag}_02_expediente", expediente_html)
                details = CaseHistoryDetails(fre=fre, cid=cid, candidate=candidate)
                sections: Dict[str, pjn_parsers.ParseResult] = {}

                if include_movements:
                    movements, pages = self.collect_pages(
                        page,
                        expediente_html,
                        lambda html: pjn_parsers.parse_movements(html, fre),
                        lambda m: m.movement_id,
                        limit=max_movements,
                    )
                    for i, html in enumerate(pages[1:], start=2):
                        archive.save_html(f"{tag}_02_expediente_p{i}", html)
                    details.movements = movements
                    sections["movements"] = pjn_parsers.parse_movements(expediente_html, fre)

                if include_documents:
                    html = self._load_section(page, "digital_documents", cid, sections)
                    if html is not None:
                        archive.save_html(f"{tag}_03_doc_digitales", html)
                        result = pjn_parsers.parse_digital_documents(html, fre)
                        sections["digital_documents"] = result
                        details.documents = result.records[:max_documents] if max_documents else result.records

                if include_participants:
                    html = self._load_section(page, "participants", cid, sections)
                    if html is not None:
                        archive.save_html(f"{tag}_04_intervinientes", html)
                        result = pjn_parsers.parse_participants(html, fre)
                        sections["participants"] = result
                        details.participants = result.records

                if include_appeals:
                    html = self._load_section(page, "appeals", cid, sections)
                    if html is not None:
                        archive.save_html(f"{tag}_05_recursos", html)
                        result = pjn_parsers.parse_appeals(html, fre)
                        sections["appeals"] = result
                        details.appeals = result.records

                if include_related_cases:
                    html = self._load_section(page, "related_cases", cid, sections)
                    if html is not None:
                        archive.save_html(f"{tag}_06_vinculados", html)
                        related, _ = self.collect_pages(
                            page,
                            html,
                            lambda markup: pjn_parsers.parse_related_cases(markup, fre),
                            lambda r: r.relation_id,
                        )
                        sections["related_cases"] = pjn_parsers.parse_related_cases(html, fre)
                        details.related_cases = related

                download_errors = 0
                if download_pdfs:
                    cookies = [f"{c['name']}={c['value']}" for c in page.context.cookies()]
                    download_errors += self.pipeline.attach_documents(fre, details.documents, cookies, referer=page.url)
                    download_errors += self.pipeline.attach_documents(fre, details.movements, cookies, referer=page.url)

        details.stats = CaseHistoryStats(
            movements_count=len(details.movements),
            documents_count=len(details.documents),
            download_errors=download_errors,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        archive.save_json(f"{tag}_final_result", details.model_dump(exclude={"movements", "documents"}))
        logger.info(
            "Case history details scrape completed",
            extra={
                "fre": fre,
                "user_id": user_id,
                "stats": details.stats.model_dump(),
                "sections": pjn_parsers.section_summary(sections),
            },
        )
        return details


portal_navigator = PortalNavigator()
