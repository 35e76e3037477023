"""
Low-level client for the session-cookie API (`https://{domain}.polite.edu.sg`).

One method per remote endpoint. Every JSON body is validated against its
contract in `session_schemas` before it is returned, so callers only ever see
typed data. Pagination loops belong to the caller.
"""
from __future__ import annotations

import logging
import re
from typing import Annotated, Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import Field

from ingestion.core.errors import UnexpectedResponseError
from ingestion.core.session_schemas import (
    CourseParent,
    DropboxFolder,
    EntityDropbox,
    FetchToken,
    MyOrgUnitInfo,
    ObjectListPage,
    OrganizationInfo,
    PagedResultSet,
    QuizReadData,
    TableOfContents,
    WhoAmIUser,
    validate_payload,
)
from ingestion.core.transport import DEFAULT_MAX_IN_FLIGHT, DEFAULT_TIMEOUT_SECONDS, AbortableTransport

logger = logging.getLogger("coursegraph.ingestion.session")

SESSION_HOST_TEMPLATE = "https://{domain}.polite.edu.sg"
LP_VERSION = "1.46"
LE_VERSION = "1.75"

# The parent-org-unit lookup accepts at most this many ids per request.
PARENT_ORG_UNIT_BATCH_LIMIT = 25

XSRF_TOKEN_PATTERN = re.compile(r"""\.setItem\(['"]XSRF.Token['"],\s*['"](.+?)['"]\)""")

# At most one entry: the current user's own submission record.
SingleEntityDropbox = Annotated[list[EntityDropbox], Field(max_length=1)]


class SessionApiClient:
    """Cookie-authenticated client; owns its own cancellation signal."""

    def __init__(
        self,
        *,
        session_val: str,
        secure_session_val: str,
        domain: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._domain = domain
        self._http = AbortableTransport(
            name="session",
            base_url=self.base_url,
            headers={
                "Accept": "application/json",
                "Cookie": f"d2lSessionVal={session_val}; d2lSecureSessionVal={secure_session_val}",
            },
            timeout_seconds=timeout_seconds,
            max_in_flight=max_in_flight,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return SESSION_HOST_TEMPLATE.format(domain=self._domain)

    # Auth

    async def get_new_fetch_token(self) -> FetchToken:
        """Exchange the session cookies for a short-lived bearer token.

        The CSRF token needed by the exchange is embedded in a script on the homepage.
        """
        homepage = await self._fetch_text("/d2l/home")
        match = XSRF_TOKEN_PATTERN.search(homepage)
        if match is None:
            raise UnexpectedResponseError("No XSRF token found in homepage", url=f"{self.base_url}/d2l/home")

        logger.debug("Exchanging session for a fetch token")
        return await self._fetch_json(
            "/d2l/lp/auth/oauth2/token",
            FetchToken,
            method="POST",
            headers={"X-Csrf-Token": match.group(1)},
            data={"scope": "*:*:*"},
        )

    # Users / organization

    async def who_am_i(self) -> WhoAmIUser:
        return await self._fetch_json("/d2l/api/lp/1.0/users/whoami", WhoAmIUser)

    async def get_organization_info(self) -> OrganizationInfo:
        return await self._fetch_json(f"/d2l/api/lp/{LP_VERSION}/organization/info", OrganizationInfo)

    # Enrollments

    async def get_my_enrollments(self, *, bookmark: Optional[str] = None) -> PagedResultSet[MyOrgUnitInfo]:
        """One page of the user's enrollments; pass the previous page's bookmark to continue."""
        query = f"?{urlencode({'bookmark': bookmark})}" if bookmark else ""
        return await self._fetch_json(
            f"/d2l/api/lp/{LP_VERSION}/enrollments/myenrollments/{query}",
            PagedResultSet[MyOrgUnitInfo],
        )

    async def get_parent_org_units(self, org_unit_ids: list[str]) -> list[CourseParent]:
        """Semester/department parents of up to 25 course offerings."""
        if len(org_unit_ids) > PARENT_ORG_UNIT_BATCH_LIMIT:
            raise ValueError(f"At most {PARENT_ORG_UNIT_BATCH_LIMIT} org units per request, got {len(org_unit_ids)}")
        query = urlencode({"orgUnitIdsCSV": ",".join(org_unit_ids)})
        return await self._fetch_json(f"/d2l/api/lp/{LP_VERSION}/courses/parentorgunits?{query}", list[CourseParent])

    # Content

    async def get_module_toc(self, module_id: str) -> TableOfContents:
        return await self._fetch_json(f"/d2l/api/le/{LE_VERSION}/{module_id}/content/toc", TableOfContents)

    async def get_content_html(self, url_or_path: str) -> str:
        """Raw body of a content URL (absolute, or relative to the session host)."""
        return await self._fetch_text(url_or_path)

    def get_image_url(self, org_unit_id: str, *, width: Optional[int] = None, height: Optional[int] = None) -> str:
        query = f"?{urlencode({'width': width, 'height': height})}" if width and height else ""
        return f"{self.base_url}/d2l/api/lp/{LP_VERSION}/courses/{org_unit_id}/image{query}"

    # Dropbox / submissions

    async def get_dropbox_folders(self, module_id: str) -> list[DropboxFolder]:
        return await self._fetch_json(f"/d2l/api/le/{LE_VERSION}/{module_id}/dropbox/folders/", list[DropboxFolder])

    async def get_dropbox_submissions(self, module_id: str, dropbox_id: str) -> list[EntityDropbox]:
        """The current user's submission record for a dropbox (zero or one entries).

        Rejected with an authorization error once the dropbox's availability window closes.
        """
        return await self._fetch_json(
            f"/d2l/api/le/{LE_VERSION}/{module_id}/dropbox/folders/{dropbox_id}/submissions/",
            SingleEntityDropbox,
        )

    # Quizzes

    async def get_quizzes_page(self, url_or_path: str) -> ObjectListPage[QuizReadData]:
        """One page of quizzes. `next` on the result is the absolute URL of the following page."""
        return await self._fetch_json(url_or_path, ObjectListPage[QuizReadData])

    # Lifecycle

    def abort(self) -> None:
        self._http.abort()

    @property
    def aborted(self) -> bool:
        return self._http.aborted

    async def aclose(self) -> None:
        await self._http.aclose()

    # Helpers

    async def _fetch_json(self, url_or_path: str, schema: Any, *, method: str = "GET", **kwargs: Any) -> Any:
        response = await self._http.request(method, url_or_path, **kwargs)
        self._raise_for_status(response)
        try:
            data = response.json()
        except ValueError as e:
            raise UnexpectedResponseError(
                f"Non-JSON body from {response.request.url}",
                status_code=response.status_code,
                url=str(response.request.url),
            ) from e
        return validate_payload(schema, data, url=str(response.request.url))

    async def _fetch_text(self, url_or_path: str) -> str:
        response = await self._http.request("GET", url_or_path)
        self._raise_for_status(response)
        return response.text

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        raise UnexpectedResponseError(
            f"Received {response.status_code} for {response.request.url}",
            status_code=response.status_code,
            url=str(response.request.url),
        )
