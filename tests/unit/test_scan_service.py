from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from social_rewards.application.errors import InvalidRequestError, StorageUnavailableError
from social_rewards.application.ports.audit_repository_port import AuditEventCreateInput
from social_rewards.application.ports.identity_repository_port import IdentityRecord
from social_rewards.application.ports.score_ledger_port import (
    AwardOutcome,
    AwardRequest,
    AwardResult,
)
from social_rewards.application.ports.x_api_port import XPost, XRateLimitedError
from social_rewards.application.services.scan_service import ScanService
from social_rewards.domain.reward_policy import RewardPolicy
from social_rewards.domain.score_kinds import ScoreKind

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _identity(external_user_id: str, handle: str) -> IdentityRecord:
    return IdentityRecord(
        external_user_id=external_user_id,
        subject_key=f"0x{handle}",
        handle=handle,
        display_name=None,
        is_verified=True,
        verified_at=NOW - timedelta(days=1),
        created_at=NOW - timedelta(days=1),
        updated_at=NOW - timedelta(days=1),
    )


class FakeIdentityRepository:
    def __init__(self, identities: list[IdentityRecord]) -> None:
        self.identities = identities

    async def list_verified(self) -> list[IdentityRecord]:
        return list(self.identities)


class FakeSearchClient:
    def __init__(self) -> None:
        self.phrase_posts: dict[str, XPost | None] = {}
        self.tagged_posts: dict[str, XPost | None] = {}
        self.failing_handles: set[str] = set()
        self.searches: list[tuple[str, str, datetime | None]] = []
        self.target_handles: list[str] = []

    async def find_phrase_post(
        self,
        *,
        handle: str,
        phrase: str,
        since: datetime | None = None,
    ) -> XPost | None:
        self.searches.append(("phrase", handle, since))
        if handle in self.failing_handles:
            raise XRateLimitedError("slow down", status_code=429)
        return self.phrase_posts.get(handle)

    async def find_tagged_phrase_post(
        self,
        *,
        handle: str,
        target_handle: str,
        phrase: str,
        since: datetime | None = None,
    ) -> XPost | None:
        self.searches.append(("tagged", handle, since))
        self.target_handles.append(target_handle)
        return self.tagged_posts.get(handle)


class FakeLedger:
    def __init__(self) -> None:
        self.rows: dict[str, int] = {}
        self.requests: list[AwardRequest] = []
        self.awarded: set[tuple[str, ScoreKind]] = set()
        self.fail_ensure_row = False

    async def ensure_row(self, *, external_user_id: str) -> None:
        if self.fail_ensure_row:
            raise StorageUnavailableError("ledger_ensure_row failed")
        self.rows.setdefault(external_user_id, 0)

    async def award(self, request: AwardRequest) -> AwardResult:
        self.requests.append(request)
        key = (request.external_user_id, request.kind)
        if key in self.awarded:
            return AwardResult(outcome=AwardOutcome.ALREADY_AWARDED)
        self.awarded.add(key)
        self.rows[request.external_user_id] += request.delta
        return AwardResult(outcome=AwardOutcome.ACCEPTED)


class FakeLeaderboard:
    def __init__(self) -> None:
        self.scans: list[dict[str, object]] = []

    async def mark_scan(
        self,
        *,
        external_user_id: str,
        scanned_at: datetime,
        last_ribbit_at: datetime | None = None,
        last_ribbit_tag_at: datetime | None = None,
    ) -> None:
        self.scans.append(
            {
                "external_user_id": external_user_id,
                "scanned_at": scanned_at,
                "last_ribbit_at": last_ribbit_at,
                "last_ribbit_tag_at": last_ribbit_tag_at,
            }
        )


class FakeAuditRepository:
    def __init__(self) -> None:
        self.events: list[AuditEventCreateInput] = []

    async def append_event(self, payload: AuditEventCreateInput) -> int:
        self.events.append(payload)
        return len(self.events)


def _service(
    *,
    identities: list[IdentityRecord],
    x_client: FakeSearchClient,
    ledger: FakeLedger,
    leaderboard: FakeLeaderboard,
    audit: FakeAuditRepository | None = None,
) -> ScanService:
    return ScanService(
        identities=FakeIdentityRepository(identities),  # type: ignore[arg-type]
        ledger=ledger,  # type: ignore[arg-type]
        leaderboard=leaderboard,  # type: ignore[arg-type]
        x_client=x_client,  # type: ignore[arg-type]
        policy=RewardPolicy(),
        target_handle="joinfroggys",
        required_phrase="RIBBIT",
        audit_repository=audit,
        now=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_scan_awards_windowed_kinds_and_marks_scan() -> None:
    x_client = FakeSearchClient()
    posted_at = NOW - timedelta(hours=2)
    x_client.phrase_posts["alice"] = XPost(id="p1", text="RIBBIT", created_at=posted_at)
    x_client.tagged_posts["alice"] = XPost(id="p2", text="RIBBIT @joinfroggys")
    ledger = FakeLedger()
    leaderboard = FakeLeaderboard()
    audit = FakeAuditRepository()
    service = _service(
        identities=[_identity("1", "alice"), _identity("2", "bob")],
        x_client=x_client,
        ledger=ledger,
        leaderboard=leaderboard,
        audit=audit,
    )

    summary = await service.run_once()

    assert summary.scanned == 2
    assert summary.updated == 2
    assert summary.errors == 0
    assert summary.window_hours == 12
    assert ledger.rows == {"1": 2, "2": 0}
    assert {(request.kind, request.delta, request.since) for request in ledger.requests} == {
        (ScoreKind.RIBBIT, 1, NOW - timedelta(hours=12)),
        (ScoreKind.RIBBIT_TAG, 1, NOW - timedelta(hours=12)),
    }
    assert leaderboard.scans == [
        {
            "external_user_id": "1",
            "scanned_at": NOW,
            "last_ribbit_at": posted_at,
            "last_ribbit_tag_at": NOW,
        },
        {
            "external_user_id": "2",
            "scanned_at": NOW,
            "last_ribbit_at": None,
            "last_ribbit_tag_at": None,
        },
    ]
    assert audit.events[0].event_type == "scan_completed"
    assert audit.events[0].payload["scanned"] == 2


@pytest.mark.asyncio
async def test_second_scan_in_same_window_awards_nothing() -> None:
    x_client = FakeSearchClient()
    x_client.phrase_posts["alice"] = XPost(id="p1", text="RIBBIT", created_at=NOW)
    ledger = FakeLedger()
    leaderboard = FakeLeaderboard()
    service = _service(
        identities=[_identity("1", "alice")],
        x_client=x_client,
        ledger=ledger,
        leaderboard=leaderboard,
    )

    await service.run_once()
    summary = await service.run_once()

    assert summary.updated == 0
    assert ledger.rows == {"1": 1}
    assert leaderboard.scans[-1]["last_ribbit_at"] is None


@pytest.mark.asyncio
async def test_per_identity_failures_are_counted_and_scan_continues() -> None:
    x_client = FakeSearchClient()
    x_client.failing_handles.add("alice")
    x_client.phrase_posts["bob"] = XPost(id="p9", text="RIBBIT", created_at=NOW)
    ledger = FakeLedger()
    leaderboard = FakeLeaderboard()
    service = _service(
        identities=[_identity("1", "alice"), _identity("2", "bob")],
        x_client=x_client,
        ledger=ledger,
        leaderboard=leaderboard,
    )

    summary = await service.run_once(window_hours=6)

    assert summary.scanned == 2
    assert summary.updated == 1
    assert summary.errors == 1
    assert summary.window_hours == 6
    assert [scan["external_user_id"] for scan in leaderboard.scans] == ["2"]
    assert ("phrase", "bob", NOW - timedelta(hours=6)) in x_client.searches


@pytest.mark.asyncio
async def test_storage_failure_counts_as_error() -> None:
    ledger = FakeLedger()
    ledger.fail_ensure_row = True
    service = _service(
        identities=[_identity("1", "alice")],
        x_client=FakeSearchClient(),
        ledger=ledger,
        leaderboard=FakeLeaderboard(),
    )

    summary = await service.run_once()

    assert summary.errors == 1
    assert summary.updated == 0


@pytest.mark.asyncio
async def test_non_positive_window_is_rejected() -> None:
    service = _service(
        identities=[],
        x_client=FakeSearchClient(),
        ledger=FakeLedger(),
        leaderboard=FakeLeaderboard(),
    )

    with pytest.raises(InvalidRequestError):
        await service.run_once(window_hours=0)


@pytest.mark.asyncio
async def test_target_handle_is_searched_without_at_prefix() -> None:
    x_client = FakeSearchClient()
    x_client.tagged_posts["alice"] = XPost(id="p2", text="RIBBIT @JoinFroggys")
    ledger = FakeLedger()
    service = ScanService(
        identities=FakeIdentityRepository([_identity("1", "alice")]),  # type: ignore[arg-type]
        ledger=ledger,  # type: ignore[arg-type]
        leaderboard=FakeLeaderboard(),  # type: ignore[arg-type]
        x_client=x_client,  # type: ignore[arg-type]
        policy=RewardPolicy(),
        target_handle="@JoinFroggys",
        required_phrase="RIBBIT",
        now=lambda: NOW,
    )

    summary = await service.run_once()

    assert x_client.target_handles == ["JoinFroggys"]
    assert summary.updated == 1
    assert ledger.rows == {"1": 1}
