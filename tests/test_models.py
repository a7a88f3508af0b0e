import pytest

from mailpail.core.models import (
    Ambiguous,
    ItemResult,
    Outcome,
    RunReport,
    build_key,
    comment_key,
    pull_request_key,
)


def test_pull_request_key():
    assert pull_request_key("PROJ", "repo", 1) == "PROJ.repo.pr.1"


def test_comment_key():
    assert comment_key("PROJ", "repo", 1, 77) == "PROJ.repo.comment.1.77"


def test_segments_are_escaped():
    assert pull_request_key("PROJ", "my.repo", 1) == "PROJ.my%2Erepo.pr.1"
    assert pull_request_key("~user", "a/b c", 2) == "~user.a%2Fb%20c.pr.2"


def test_escaped_keys_do_not_collide():
    assert pull_request_key("A.B", "c", 1) != pull_request_key("A", "B.c", 1)


def test_build_key_needs_segments():
    with pytest.raises(ValueError):
        build_key()


def test_ambiguous_count():
    assert Ambiguous("k", ("a", "b", "c")).count == 3


def test_run_report():
    report = RunReport()
    report.add(ItemResult("a", Outcome.DELIVERED, 0))
    report.add(ItemResult("b", Outcome.SKIPPED, 1))
    report.add(ItemResult("c", Outcome.SEEDED, 2))
    report.add(ItemResult("d", Outcome.FAILED, 3, "boom"))

    assert report.writes == 2
    assert [item.key for item in report.failed] == ["d"]
    assert report.summary() == "delivered=1, updated=0, skipped=1, seeded=1, failed=1"
