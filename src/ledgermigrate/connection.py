"""
Connection - one addressable source or target ledger endpoint.

This module is the HTTP client used by every other component. It handles:
- Posting JSON query and transaction documents with an optional bearer credential
- Classifying responses into availability / authorization flags
- Create-vs-transact wire semantics for a target ledger
- An explicit request state machine with bounded fixed-backoff retry
  and interactive remediation through a :class:`~ledgermigrate.prompts.Prompter`

Usage:
    from ledgermigrate.connection import ConnectionState, RequestLoop

    source = ConnectionState("http://localhost:8090/fdb/acme/crm")
    loop = RequestLoop(source, prompter=ClickPrompter())
    response = loop.run(lambda conn: conn.issue_schema_query())
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

import requests

from .prompts import Prompter
from .queries import build_data_page_query, build_schema_query
from .version import VERSION

logger = logging.getLogger(__name__)

__all__ = [
    "ConnectionState",
    "RequestLoop",
    "RequestState",
    "TRANSITIONS",
]

# Status codes that mean "reachable, but the credential is wrong or missing"
AUTH_STATUS_CODES = (401, 403)


class RequestState(str, Enum):
    """States of one request/remediation cycle."""

    IDLE = "idle"
    QUERYING = "querying"
    NEEDS_URL = "needs_url"
    NEEDS_AUTH = "needs_auth"
    SUCCESS = "success"
    FATAL = "fatal"


TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.IDLE: frozenset({RequestState.QUERYING}),
    RequestState.QUERYING: frozenset({
        RequestState.QUERYING,
        RequestState.SUCCESS,
        RequestState.NEEDS_URL,
        RequestState.NEEDS_AUTH,
    }),
    RequestState.NEEDS_URL: frozenset({
        RequestState.QUERYING,
        RequestState.NEEDS_AUTH,
        RequestState.FATAL,
    }),
    RequestState.NEEDS_AUTH: frozenset({
        RequestState.QUERYING,
        RequestState.FATAL,
    }),
    RequestState.SUCCESS: frozenset(),
    RequestState.FATAL: frozenset(),
}


class ConnectionState:
    """
    One source or target ledger endpoint and what we know about it.

    Attributes:
        url: Ledger URL (source: ``.../fdb/network/db``; target: server root)
        credential: Opaque bearer token, or None
        available: Whether the last request got a usable response
        authorized: Whether the last request was accepted with the credential
        ledger_created: Target only; False until the first submission,
            which then uses the "create" path instead of "transact"
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        url: str,
        credential: Optional[str] = None,
        *,
        ledger_created: bool = True,
        timeout: float = 300.0,
    ) -> None:
        self.url = url.rstrip("/")
        self.credential = credential
        self.available = True
        self.authorized = True
        self.ledger_created = ledger_created
        self.timeout = timeout

        # Session for connection pooling
        self._session = requests.Session()

        logger.debug(f"ConnectionState initialized for {self.url}")

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"ledgermigrate/{VERSION}",
        }
        if self.credential:
            headers["Authorization"] = f"Bearer {self.credential}"
        return headers

    def _post(self, path: str, payload: Any) -> requests.Response:
        return self._session.post(
            f"{self.url}/{path}",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )

    def issue_schema_query(self) -> requests.Response:
        """Post the predicate multi-query.

        Raises:
            requests.exceptions.RequestException: On transport failure
        """
        return self._post("multi-query", build_schema_query())

    def issue_data_page_query(
        self,
        collection: str,
        offset: int,
        page_size: int,
    ) -> requests.Response:
        """Post a query for one page of *collection* entities.

        An empty JSON array in the response body signals a possible end.
        """
        return self._post("query", build_data_page_query(collection, offset, page_size))

    def submit(self, payload: dict[str, Any]) -> requests.Response:
        """Submit a JSON-LD document to the target ledger.

        The first submission to an un-created ledger goes to the create
        path. The created flag flips after any attempt, successful or not.
        """
        path = "fluree/transact" if self.ledger_created else "fluree/create"
        try:
            logger.debug(f"Submitting to {self.url}/{path}")
            return self._post(path, payload)
        finally:
            # TODO: only flip on a 2xx once the target reports "already exists" distinctly
            self.ledger_created = True

    def validate(self, response: Optional[requests.Response]) -> tuple[bool, bool]:
        """
        Classify a response (None for a transport failure).

        Returns:
            Tuple of (available, authorized); also stored on the instance
        """
        if response is None:
            logger.error(f"The request to [{self.url}] failed. Please try again.")
            self.available, self.authorized = False, True
        elif 200 <= response.status_code < 300:
            self.available, self.authorized = True, True
        elif response.status_code in AUTH_STATUS_CODES:
            if self.credential:
                logger.error(
                    "The API Key you provided is not authorized to access this "
                    "ledger. Please try again."
                )
            else:
                logger.error(
                    "It appears you need to provide an API Key to access this "
                    "ledger. Please try again."
                )
            self.available, self.authorized = True, False
        else:
            logger.error(
                f"The request to [{self.url}] returned a status code of "
                f"{response.status_code}. Please try again."
            )
            self.available, self.authorized = False, self.credential is None
        return self.available, self.authorized

    def close(self) -> None:
        """Close the underlying requests session."""
        self._session.close()

    def __enter__(self) -> ConnectionState:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ConnectionState({self.url!r}, ledger_created={self.ledger_created})"


class RequestLoop:
    """
    Drive one request through the remediation state machine.

    ``Querying`` retries a pure transport failure up to *max_attempts*
    times with a fixed *backoff*, then asks for a new URL. Prompts go
    through *prompter*; without one (unattended runs) any state that
    needs a prompt ends in ``Fatal`` and :meth:`run` returns None.

    Attributes:
        state: Current :class:`RequestState`
        history: Every state entered, in order
        attempts: Transport attempts made against the current URL
    """

    def __init__(
        self,
        connection: ConnectionState,
        *,
        prompter: Optional[Prompter] = None,
        max_attempts: int = 5,
        backoff: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.connection = connection
        self.prompter = prompter
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._sleep = sleep
        self.state = RequestState.IDLE
        self.history: list[RequestState] = [self.state]
        self.attempts = 0

    def _transition(self, new_state: RequestState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {new_state.value}")
        logger.debug(f"{self.connection.url}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def run(
        self,
        action: Callable[[ConnectionState], requests.Response],
    ) -> Optional[requests.Response]:
        """Run *action* until it succeeds or remediation is impossible."""
        self.state = RequestState.IDLE
        self.history = [self.state]
        self.attempts = 0
        self._transition(RequestState.QUERYING)

        while True:
            if self.state is RequestState.QUERYING:
                response = self._attempt(action)
                available, authorized = self.connection.validate(response)
                if available and authorized:
                    self._transition(RequestState.SUCCESS)
                    return response
                if response is None and self.attempts < self.max_attempts:
                    logger.warning(
                        f"Attempt {self.attempts}/{self.max_attempts} failed, "
                        f"retrying in {self.backoff:.0f}s"
                    )
                    self._sleep(self.backoff)
                    self._transition(RequestState.QUERYING)
                elif not available:
                    self._transition(RequestState.NEEDS_URL)
                else:
                    self._transition(RequestState.NEEDS_AUTH)

            elif self.state is RequestState.NEEDS_URL:
                url = self.prompter.ask_url(self.connection.url) if self.prompter else None
                if not url:
                    self._transition(RequestState.FATAL)
                    return None
                self.connection.url = url.rstrip("/")
                self.attempts = 0
                if self.connection.authorized:
                    self._transition(RequestState.QUERYING)
                else:
                    self._transition(RequestState.NEEDS_AUTH)

            elif self.state is RequestState.NEEDS_AUTH:
                credential = self.prompter.ask_credential() if self.prompter else None
                if not credential:
                    self._transition(RequestState.FATAL)
                    return None
                self.connection.credential = credential
                self._transition(RequestState.QUERYING)

    def _attempt(
        self,
        action: Callable[[ConnectionState], requests.Response],
    ) -> Optional[requests.Response]:
        self.attempts += 1
        try:
            return action(self.connection)
        except requests.exceptions.RequestException as e:
            logger.debug(f"Transport failure against {self.connection.url}: {e}")
            return None
