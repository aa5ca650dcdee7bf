from __future__ import annotations

import asyncio
from typing import Any

from fallback_router.errors import NoRouteAvailable, NotAVirtualModel, Resolution
from fallback_router.models import VirtualModel
from fallback_router.persistence import InMemoryStore
from fallback_router.providers import AIProvider
from fallback_router.service import FallbackService


class _FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _RecordingChecker:
    def __init__(self, available: set[tuple[AIProvider, str]]) -> None:
        self.available = available
        self.calls: list[tuple[AIProvider, str]] = []

    def __call__(self, provider: AIProvider, model_id: str) -> bool:
        self.calls.append((provider, model_id))
        return (provider, model_id) in self.available


def _fast_model_service(**kwargs: Any) -> tuple[FallbackService, VirtualModel]:
    service = FallbackService(InMemoryStore(), **kwargs)
    service.set_enabled(True)
    model = service.add_virtual_model("fast-model")
    assert isinstance(model, VirtualModel)
    service.add_fallback_entry(model.id, AIProvider.CLAUDE, "claude-sonnet-4")
    service.add_fallback_entry(model.id, AIProvider.GEMINI, "gemini-2.5-pro")
    return service, model


def test_falls_back_to_second_entry_when_first_has_no_capacity() -> None:
    service, _ = _fast_model_service()
    checker = _RecordingChecker({(AIProvider.GEMINI, "gemini-2.5-pro")})

    outcome = service.resolve_model_sync("fast-model", checker)

    assert outcome == Resolution(
        provider=AIProvider.GEMINI,
        model_id="gemini-2.5-pro",
        virtual_model_name="fast-model",
        fallback_index=1,
    )
    assert checker.calls == [
        (AIProvider.CLAUDE, "claude-sonnet-4"),
        (AIProvider.GEMINI, "gemini-2.5-pro"),
    ]


def test_returns_no_route_when_every_entry_is_exhausted() -> None:
    service, _ = _fast_model_service()
    checker = _RecordingChecker(set())

    outcome = service.resolve_model_sync("fast-model", checker)

    assert outcome == NoRouteAvailable(virtual_model_name="fast-model", attempted=2)
    assert len(checker.calls) == 2
    assert service.get_route_state("fast-model") is None


def test_picks_highest_priority_available_entry_and_stops_checking() -> None:
    service, model = _fast_model_service()
    service.add_fallback_entry(model.id, AIProvider.KIRO, "kiro-claude")
    checker = _RecordingChecker(
        {
            (AIProvider.GEMINI, "gemini-2.5-pro"),
            (AIProvider.KIRO, "kiro-claude"),
        }
    )

    outcome = service.resolve_model_sync("fast-model", checker)

    assert isinstance(outcome, Resolution)
    assert outcome.fallback_index == 1
    assert (AIProvider.KIRO, "kiro-claude") not in checker.calls


def test_unknown_name_and_disabled_states_are_not_virtual_models() -> None:
    service, model = _fast_model_service()
    checker = _RecordingChecker({(AIProvider.CLAUDE, "claude-sonnet-4")})

    assert service.resolve_model_sync("gpt-5", checker) == NotAVirtualModel("gpt-5")
    assert service.resolve_model_sync("FAST-MODEL", checker) == NotAVirtualModel("FAST-MODEL")

    service.toggle_virtual_model(model.id)
    assert service.resolve_model_sync("fast-model", checker) == NotAVirtualModel("fast-model")

    service.toggle_virtual_model(model.id)
    service.set_enabled(False)
    assert service.resolve_model_sync("fast-model", checker) == NotAVirtualModel("fast-model")
    assert checker.calls == []


def test_empty_chain_reports_no_route() -> None:
    service = FallbackService(InMemoryStore())
    service.set_enabled(True)
    service.add_virtual_model("empty")

    outcome = service.resolve_model_sync("empty", _RecordingChecker(set()))

    assert outcome == NoRouteAvailable(virtual_model_name="empty", attempted=0)


def test_second_resolution_uses_cached_route_without_checking() -> None:
    service, _ = _fast_model_service()
    checker = _RecordingChecker({(AIProvider.GEMINI, "gemini-2.5-pro")})

    first = service.resolve_model_sync("fast-model", checker)
    calls_after_first = len(checker.calls)
    second = service.resolve_model_sync("fast-model", checker)

    assert first == second
    assert isinstance(second, Resolution)
    assert second.from_cache is True
    assert len(checker.calls) == calls_after_first

    state = service.get_route_state("fast-model")
    assert state is not None
    assert state.current_entry_index == 1
    assert state.total_entries_at_capture == 2
    assert state.current_entry.model_id == "gemini-2.5-pro"


def test_configuration_change_invalidates_cached_route() -> None:
    service, model = _fast_model_service()
    checker = _RecordingChecker({(AIProvider.GEMINI, "gemini-2.5-pro")})
    service.resolve_model_sync("fast-model", checker)

    service.move_fallback_entry(model.id, 1, 0)
    assert service.get_route_state("fast-model") is None

    checker.calls.clear()
    outcome = service.resolve_model_sync("fast-model", checker)

    assert isinstance(outcome, Resolution)
    assert outcome.fallback_index == 0
    assert outcome.from_cache is False
    assert checker.calls == [(AIProvider.GEMINI, "gemini-2.5-pro")]


def test_unrelated_model_change_keeps_cached_route() -> None:
    service, _ = _fast_model_service()
    other = service.add_virtual_model("other-model")
    assert isinstance(other, VirtualModel)
    checker = _RecordingChecker({(AIProvider.CLAUDE, "claude-sonnet-4")})
    service.resolve_model_sync("fast-model", checker)

    service.add_fallback_entry(other.id, AIProvider.CODEX, "gpt-5-codex")
    checker.calls.clear()
    outcome = service.resolve_model_sync("fast-model", checker)

    assert isinstance(outcome, Resolution)
    assert outcome.from_cache is True
    assert checker.calls == []


def test_cached_route_expires_after_ttl() -> None:
    clock = _FakeClock()
    service, _ = _fast_model_service(route_state_ttl_seconds=60.0, clock=clock)
    checker = _RecordingChecker({(AIProvider.CLAUDE, "claude-sonnet-4")})
    service.resolve_model_sync("fast-model", checker)

    clock.now += 59.0
    service.resolve_model_sync("fast-model", checker)
    assert len(checker.calls) == 1

    clock.now += 1.0
    outcome = service.resolve_model_sync("fast-model", checker)
    assert isinstance(outcome, Resolution)
    assert outcome.from_cache is False
    assert len(checker.calls) == 2


def test_async_checker_matches_sync_checker() -> None:
    async def _run() -> None:
        service, _ = _fast_model_service()
        calls: list[str] = []

        async def _checker(provider: AIProvider, model_id: str) -> bool:
            calls.append(model_id)
            await asyncio.sleep(0)
            return provider is AIProvider.GEMINI

        outcome = await service.resolve_model("fast-model", _checker)
        assert outcome == Resolution(
            provider=AIProvider.GEMINI,
            model_id="gemini-2.5-pro",
            virtual_model_name="fast-model",
            fallback_index=1,
        )
        assert calls == ["claude-sonnet-4", "gemini-2.5-pro"]

    asyncio.run(_run())


def test_async_checks_never_overlap() -> None:
    async def _run() -> None:
        service, model = _fast_model_service()
        service.add_fallback_entry(model.id, AIProvider.KIRO, "kiro-claude")
        in_flight = 0
        max_in_flight = 0

        async def _checker(provider: AIProvider, model_id: str) -> bool:
            nonlocal in_flight, max_in_flight
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return provider is AIProvider.KIRO

        outcome = await service.resolve_model("fast-model", _checker)
        assert isinstance(outcome, Resolution)
        assert outcome.fallback_index == 2
        assert max_in_flight == 1

    asyncio.run(_run())


def test_checker_errors_count_as_no_capacity() -> None:
    service, _ = _fast_model_service()

    def _checker(provider: AIProvider, model_id: str) -> bool:
        if provider is AIProvider.CLAUDE:
            raise RuntimeError("quota endpoint timed out")
        return True

    outcome = service.resolve_model_sync("fast-model", _checker)

    assert isinstance(outcome, Resolution)
    assert outcome.provider is AIProvider.GEMINI


def test_change_during_check_prevents_recording_route_state() -> None:
    service, model = _fast_model_service()

    def _checker(provider: AIProvider, model_id: str) -> bool:
        if provider is AIProvider.CLAUDE:
            service.add_fallback_entry(model.id, AIProvider.KIRO, "kiro-claude")
            return True
        return False

    outcome = service.resolve_model_sync("fast-model", _checker)

    assert isinstance(outcome, Resolution)
    assert outcome.provider is AIProvider.CLAUDE
    assert service.get_route_state("fast-model") is None


def test_report_route_failure_forces_fresh_check() -> None:
    service, _ = _fast_model_service()
    checker = _RecordingChecker({(AIProvider.CLAUDE, "claude-sonnet-4")})
    service.resolve_model_sync("fast-model", checker)

    assert service.report_route_failure("fast-model") is True
    assert service.report_route_failure("fast-model") is False

    checker.available = {(AIProvider.GEMINI, "gemini-2.5-pro")}
    outcome = service.resolve_model_sync("fast-model", checker)
    assert isinstance(outcome, Resolution)
    assert outcome.fallback_index == 1


def test_concurrent_resolutions_share_consistent_route_state() -> None:
    async def _run() -> None:
        service, _ = _fast_model_service()

        async def _checker(provider: AIProvider, model_id: str) -> bool:
            await asyncio.sleep(0)
            return provider is AIProvider.GEMINI

        outcomes = await asyncio.gather(
            *(service.resolve_model("fast-model", _checker) for _ in range(5))
        )
        assert {outcome for outcome in outcomes} == {
            Resolution(
                provider=AIProvider.GEMINI,
                model_id="gemini-2.5-pro",
                virtual_model_name="fast-model",
                fallback_index=1,
            )
        }
        state = service.get_route_state("fast-model")
        assert state is not None
        assert state.current_entry_index == 1
        assert state.current_entry.provider is AIProvider.GEMINI

    asyncio.run(_run())
