"""Property-based tests for QuotaLedger."""

from __future__ import annotations

from datetime import timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from anafguard.clock import ManualClock
from anafguard.config import QuotaSettings
from anafguard.operations import MESSAGE_SCOPED_CLASSES, OperationClass, OperationDescriptor
from anafguard.quota import GLOBAL, Admitted, Denied, QuotaLedger

limits = st.integers(min_value=0, max_value=4)

operations = st.builds(
    lambda operation_class, account, message: OperationDescriptor(
        operation_class=operation_class,
        account_key=account,
        message_key=message if operation_class in MESSAGE_SCOPED_CLASSES else None,
    ),
    st.sampled_from(list(OperationClass)),
    st.sampled_from(["A", "B"]),
    st.sampled_from(["m1", "m2", "m3"]),
)


@settings(max_examples=200, deadline=None)
@given(
    global_limit=st.integers(min_value=1, max_value=8),
    upload=limits,
    status=limits,
    listing=limits,
    paginated=limits,
    download=limits,
    ops=st.lists(operations, max_size=40),
)
def test_decisions_match_reference_counting(
    global_limit: int,
    upload: int,
    status: int,
    listing: int,
    paginated: int,
    download: int,
    ops: list[OperationDescriptor],
) -> None:
    """With time frozen the ledger behaves like all-or-nothing counting in scope order."""
    ledger = QuotaLedger.from_settings(
        QuotaSettings(
            global_per_minute=global_limit,
            upload_per_day_account=upload,
            status_per_day_message=status,
            list_per_day_account=listing,
            paginated_list_per_day_account=paginated,
            download_per_day_message=download,
        ),
        ManualClock(),
    )
    used: dict[tuple[str, str], int] = {}

    for op in ops:
        scopes = ledger.applicable_scopes(op)
        keyed = [(scope, scope.key_for(op)) for scope in scopes]
        failing = next(
            ((scope, key) for scope, key in keyed if used.get((scope.name, key), 0) + 1 > scope.limit),
            None,
        )

        decision = ledger.admit(op)

        if failing is None:
            assert decision == Admitted(scopes=tuple(scope.name for scope in scopes))
            for scope, key in keyed:
                used[(scope.name, key)] = used.get((scope.name, key), 0) + 1
        else:
            assert isinstance(decision, Denied)
            assert (decision.scope, decision.key) == (failing[0].name, failing[1])

    for (scope_name, key), count in used.items():
        snapshot = ledger.remaining(scope_name, key)
        assert count <= snapshot.limit
        assert snapshot.remaining == snapshot.limit - count


@settings(max_examples=200, deadline=None)
@given(
    limit=st.integers(min_value=1, max_value=5),
    gaps=st.lists(st.floats(min_value=0, max_value=90, allow_nan=False), min_size=1, max_size=60),
)
def test_global_window_bounds(limit: int, gaps: list[float]) -> None:
    """Admissions in any minute never exceed twice the limit, and waiting retry_after always admits."""
    clock = ManualClock()
    ledger = QuotaLedger.from_settings(QuotaSettings(global_per_minute=limit), clock)
    op = OperationDescriptor.other("A")
    admitted_at = []

    for gap in gaps:
        clock.advance(gap)
        decision = ledger.admit(op)
        if isinstance(decision, Denied):
            assert decision.scope == GLOBAL
            assert timedelta(0) < decision.retry_after <= timedelta(minutes=1)
            clock.set(clock.now() + decision.retry_after)
            decision = ledger.admit(op)
            assert isinstance(decision, Admitted)
        admitted_at.append(clock.now())

    for start in admitted_at:
        in_minute = [t for t in admitted_at if start <= t < start + timedelta(minutes=1)]
        assert len(in_minute) <= 2 * limit
