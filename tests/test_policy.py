import pytest

from lexiweave.errors import (
    AbortRequested,
    ErrorCategory,
    ErrorTracker,
    NonInteractiveAbort,
    TranslationProviderError,
    UnsupportedFileTypeError,
)
from lexiweave.policy import ErrorPolicy


def test_tracker_counts_consecutive_runs_per_category():
    tracker = ErrorTracker()

    assert not tracker.register(ErrorCategory.TRANSLATION)
    assert not tracker.register(ErrorCategory.TRANSLATION)
    assert not tracker.register(ErrorCategory.FORMAT)
    assert tracker.consecutive == 1
    assert tracker.total == 3

    tracker.register(ErrorCategory.FORMAT)
    assert tracker.register(ErrorCategory.FORMAT)
    assert "3 times in a row" in tracker.describe_threshold()


def test_tracker_total_limit():
    tracker = ErrorTracker()
    categories = [ErrorCategory.TRANSLATION, ErrorCategory.FORMAT]
    reached = []
    for index in range(10):
        reached.append(tracker.register(categories[index % 2]))
        if index % 2:
            tracker.reset_consecutive()

    assert reached[-1] is True
    assert not any(reached[:-1])
    assert "10 errors" in tracker.describe_threshold()


def test_exception_categories():
    assert TranslationProviderError("x").category is ErrorCategory.TRANSLATION
    assert UnsupportedFileTypeError("x").category is ErrorCategory.FORMAT


def test_policy_continues_below_threshold():
    policy = ErrorPolicy(interactive=False)

    assert policy.handle_error(ErrorCategory.TRANSLATION, "boom", segment_id="p-1") == "continue"
    assert policy.records[0].segment_id == "p-1"


def test_success_resets_consecutive_errors():
    policy = ErrorPolicy(interactive=False)
    for _ in range(4):
        policy.handle_error(ErrorCategory.TRANSLATION, "boom")
        policy.handle_error(ErrorCategory.TRANSLATION, "boom")
        policy.record_success()

    assert policy.tracker.total == 8
    assert policy.tracker.consecutive == 0


def test_policy_aborts_without_user():
    policy = ErrorPolicy(interactive=False)
    policy.handle_error(ErrorCategory.TRANSLATION, "one")
    policy.handle_error(ErrorCategory.TRANSLATION, "two")

    with pytest.raises(NonInteractiveAbort):
        policy.handle_error(ErrorCategory.TRANSLATION, "three")


def test_policy_prompts_until_valid_answer(capsys):
    answers = iter(["maybe", "R"])
    policy = ErrorPolicy(interactive=True, prompt=lambda _: next(answers))
    policy.handle_error(ErrorCategory.TRANSLATION, "one")
    policy.handle_error(ErrorCategory.TRANSLATION, "two")

    assert policy.handle_error(ErrorCategory.TRANSLATION, "three") == "retry"
    assert "Please answer" in capsys.readouterr().out


def test_policy_abort_answer():
    policy = ErrorPolicy(interactive=True, prompt=lambda _: "a")
    for message in ("one", "two"):
        policy.handle_error(ErrorCategory.TRANSLATION, message)

    with pytest.raises(AbortRequested):
        policy.handle_error(ErrorCategory.TRANSLATION, "three")
