"""Block-explorer verification for deployment-orchestrator library."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests

from .exceptions import VerificationError
from .types import DeploymentRecord

logger = logging.getLogger(__name__)


class Verifier(Protocol):
    """Publishes source/metadata of a deployed artifact."""

    def verify(self, address: str, args: List[Any]) -> None:
        """
        Raises:
            VerificationError: If the explorer rejects the request
        """
        ...


class ExplorerVerifier:
    """
    Verifier for Etherscan-compatible explorer APIs.

    Source code, compiler settings and encoded constructor arguments come
    from build_submission, since they depend on the compiled artifacts.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        build_submission: Callable[[str, List[Any]], Dict[str, str]],
        poll_interval: float = 5.0,
        max_polls: int = 12,
        timeout: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.build_submission = build_submission
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.timeout = timeout
        self._sleep = sleep

    def _request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        params = {**params, "apikey": self.api_key}
        try:
            if method == "GET":
                response = requests.get(self.api_url, params=params, timeout=self.timeout)
            else:
                response = requests.post(self.api_url, data=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise VerificationError(f"Network error talking to explorer: {e}") from e

        if response.status_code != 200:
            raise VerificationError(
                f"Explorer request failed with status {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise VerificationError(f"Malformed explorer response: {e}") from e

    def is_verified(self, address: str) -> bool:
        """Whether the explorer already has source for address."""
        result = self._request(
            "GET",
            {"module": "contract", "action": "getsourcecode", "address": address},
        )
        entries = result.get("result")
        if result.get("status") != "1" or not isinstance(entries, list) or not entries:
            return False
        return bool(entries[0].get("SourceCode"))

    def verify(self, address: str, args: List[Any]) -> None:
        if self.is_verified(address):
            logger.info("%s is already verified", address)
            return

        submission = self._request(
            "POST",
            {
                "module": "contract",
                "action": "verifysourcecode",
                "contractaddress": address,
                **self.build_submission(address, args),
            },
        )
        message = str(submission.get("result", ""))
        if submission.get("status") != "1":
            if "already verified" in message.lower():
                return
            raise VerificationError(f"Explorer rejected verification of {address}: {message}")

        guid = message
        for _ in range(self.max_polls):
            self._sleep(self.poll_interval)
            status = self._request(
                "GET",
                {"module": "contract", "action": "checkverifystatus", "guid": guid},
            )
            outcome = str(status.get("result", ""))
            lowered = outcome.lower()
            if "pending" in lowered:
                continue
            if status.get("status") == "1" or "already verified" in lowered:
                logger.info("Verified %s: %s", address, outcome)
                return
            raise VerificationError(f"Verification of {address} failed: {outcome}")

        raise VerificationError(
            f"Verification of {address} still pending after {self.max_polls} polls"
        )


class VerificationQueue:
    """
    Runs verification requests in the background, each retried on its own.

    Failures are logged and recorded in results; they never reach the
    orchestration run that enqueued them.
    """

    def __init__(
        self,
        verifier: Verifier,
        max_attempts: int = 3,
        backoff: float = 10.0,
        max_workers: int = 2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.verifier = verifier
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="verify"
        )
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self.results: Dict[str, bool] = {}

    def submit(self, record: DeploymentRecord) -> Future:
        """Queue verification of a freshly recorded deployment."""
        future = self._executor.submit(self._verify_with_retry, record)
        with self._lock:
            self._futures[record.node_name] = future
        return future

    def _verify_with_retry(self, record: DeploymentRecord) -> bool:
        delay = self.backoff
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.verifier.verify(record.address, record.arguments)
            except VerificationError as e:
                if attempt == self.max_attempts:
                    logger.error(
                        "Giving up verifying %s at %s after %d attempts: %s",
                        record.node_name,
                        record.address,
                        attempt,
                        e,
                    )
                    self._set_result(record.node_name, False)
                    return False
                logger.warning(
                    "Verifying %s failed (attempt %d/%d): %s",
                    record.node_name,
                    attempt,
                    self.max_attempts,
                    e,
                )
                self._sleep(delay)
                delay *= 2
            except Exception:
                logger.exception(
                    "Verifying %s at %s raised an unexpected error",
                    record.node_name,
                    record.address,
                )
                self._set_result(record.node_name, False)
                return False
            else:
                self._set_result(record.node_name, True)
                return True
        return False

    def _set_result(self, node_name: str, ok: bool) -> None:
        with self._lock:
            self.results[node_name] = ok

    def join(self, timeout: Optional[float] = None) -> Dict[str, bool]:
        """
        Wait for queued verifications.

        Returns:
            Node name -> whether verification succeeded, for finished requests
        """
        with self._lock:
            futures = list(self._futures.values())
        wait(futures, timeout=timeout)
        with self._lock:
            return dict(self.results)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "VerificationQueue":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown(wait=True)
