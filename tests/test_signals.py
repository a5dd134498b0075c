import pytest

from mergepolicy.errors import EvaluationError
from mergepolicy.signals import Signals


class Pull:
    owner = "octo"
    repo = "repo"
    number = 3

    def __init__(self, **kw):
        self.kw = kw

    def locator(self):
        return "octo/repo#3"

    def labels(self):
        return self.kw.get("labels", [])

    def comments(self):
        return self.kw.get("comments", [])

    def body(self):
        return self.kw.get("body", "")

    def base_branch(self):
        return self.kw.get("base", "main")

    def review_states(self):
        return self.kw.get("reviews", [])

    def commits(self):
        return self.kw.get("commits", [])

    def changed_file_count(self):
        return self.kw.get("files", 0)


def test_empty_set_is_disabled_and_never_matches():
    s = Signals()
    assert s.enabled() is False
    assert s.matches(Pull(labels=["anything"]), "trigger")[0] is False


def test_zero_limits_do_not_enable():
    assert Signals(max_commits=0, max_changed_files=0).enabled() is False


def test_none_values_from_yaml_are_dropped():
    s = Signals.model_validate({"labels": None, "branches": ["main"]})
    assert s.labels == []
    assert s.enabled() is True


def test_exact_comment_is_trimmed():
    ok, reason = Signals(comments=["merge please"]).matches(Pull(comments=["  merge please \n"]), "trigger")
    assert ok is True
    assert reason == "comment 'merge please' matched"


def test_body_substring():
    ok, _ = Signals(pr_body_substrings=["==AUTO=="]).matches(Pull(body="text ==AUTO== more"), "trigger")
    assert ok is True


def test_branch_and_pattern():
    assert Signals(branches=["develop"]).matches(Pull(base="develop"), "trigger") == (
        True,
        "target branch develop matched",
    )
    ok, reason = Signals(branch_patterns=["release/.*"]).matches(Pull(base="release/1.0"), "trigger")
    assert ok is True
    assert "pattern release/.*" in reason
    # patterns must match the whole branch name
    assert Signals(branch_patterns=["release"]).matches(Pull(base="release/1.0"), "trigger")[0] is False


def test_invalid_branch_pattern_is_an_evaluation_error():
    with pytest.raises(EvaluationError):
        Signals(branch_patterns=["("]).matches(Pull(base="main"), "trigger")


def test_review_state_case_insensitive():
    ok, reason = Signals(review_states=["approved"]).matches(Pull(reviews=["APPROVED"]), "trigger")
    assert (ok, reason) == (True, "review state APPROVED matched")


def test_max_commits_and_changed_files():
    assert Signals(max_commits=1).matches(Pull(commits=["a"]), "trigger")[0] is True
    assert Signals(max_commits=1).matches(Pull(commits=["a", "b"]), "trigger")[0] is False
    assert Signals(max_changed_files=5).matches(Pull(files=5), "ignore")[0] is True
    assert Signals(max_changed_files=5).matches(Pull(files=6), "ignore") == (False, "no ignore signal matched")


def test_accessor_failure_wraps_signal_name():
    class Failing(Pull):
        def labels(self):
            raise ConnectionError("timeout")

    with pytest.raises(EvaluationError) as exc:
        Signals(labels=["x"]).matches(Failing(), "trigger")
    assert exc.value.signal == "labels"
    assert isinstance(exc.value.cause, ConnectionError)
