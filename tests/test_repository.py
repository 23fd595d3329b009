from dataclasses import dataclass, replace

import pytest

from esrepository import (
    JsonSerializer,
    NotFound,
    RefreshNotAllowed,
    Repository,
    TransportFailure,
    UpdateConflictExhausted,
    ValidationError,
    VersionConflict,
)


@dataclass
class Paper:
    title: str
    year: int = 0


@pytest.fixture
def repo(client):
    return Repository(client, "papers", JsonSerializer(Paper), refresh=True)


def test_index_then_get_returns_value_and_version(repo, client):
    written = repo.index("p1", Paper("Quantum", 2024))
    doc = repo.get("p1")

    assert doc.value == Paper("Quantum", 2024)
    assert doc.version == written.version
    assert client.calls_to("index")[0]["document"] == {"title": "Quantum", "year": 2024}


def test_get_missing_raises_not_found(repo):
    with pytest.raises(NotFound):
        repo.get("missing")


def test_create_on_existing_id_raises_conflict(repo):
    repo.index("p1", Paper("Quantum"), create=True)

    with pytest.raises(VersionConflict):
        repo.index("p1", Paper("Other"), create=True)


def test_conditional_index_with_stale_version_conflicts(repo):
    first = repo.index("p1", Paper("Quantum"))
    repo.index("p1", Paper("Quantum", 2025))

    with pytest.raises(VersionConflict):
        repo.index("p1", Paper("Stale"), if_seq_no=first.seq_no, if_primary_term=first.primary_term)


def test_rejected_document_raises_validation_error(repo, client):
    client.reject_ids.add("bad")

    with pytest.raises(ValidationError):
        repo.index("bad", Paper("Broken"))


def test_read_after_refresh_reflects_last_write(repo):
    repo.index("p1", Paper("Quantum", 2024))
    repo.index("p1", Paper("Quantum", 2025))
    repo.refresh()

    assert repo.get("p1").value.year == 2025
    assert [hit.value.year for hit in repo.search()] == [2025]


def test_update_applies_mutator_with_read_version(repo, client):
    original = repo.index("p1", Paper("Quantum", 2024))

    updated = repo.update("p1", lambda p: replace(p, year=2025))

    assert updated.value.year == 2025
    write = client.calls_to("index")[-1]
    assert write["if_seq_no"] == original.seq_no
    assert write["if_primary_term"] == original.primary_term


def _racing_mutator(client, times):
    """Mutator that lets a concurrent writer bump the document ``times`` times."""
    state = {"raced": 0}

    def mutate(paper):
        if state["raced"] < times:
            state["raced"] += 1
            client.index(index="papers", id="p1", document={"title": "racer", "year": state["raced"]})
        return replace(paper, title="mine")

    return mutate


@pytest.mark.parametrize("max_retries, races", [(0, 0), (3, 1), (3, 3)])
def test_update_succeeds_when_conflicts_stay_within_retries(repo, client, max_retries, races):
    repo.index("p1", Paper("Quantum", 2024))

    updated = repo.update("p1", _racing_mutator(client, races), max_retries=max_retries)

    assert updated.value.title == "mine"
    assert repo.get("p1").value.title == "mine"


@pytest.mark.parametrize("max_retries", [0, 2])
def test_update_gives_up_after_max_retries_plus_one_conflicts(repo, client, max_retries):
    repo.index("p1", Paper("Quantum", 2024))

    with pytest.raises(UpdateConflictExhausted) as exc_info:
        repo.update("p1", _racing_mutator(client, max_retries + 1), max_retries=max_retries)

    assert exc_info.value.attempts == max_retries + 1
    assert repo.get("p1").value.title == "racer"


def test_update_missing_document_raises_not_found(repo):
    with pytest.raises(NotFound):
        repo.update("missing", lambda p: p)


def test_delete(repo):
    repo.index("p1", Paper("Quantum"))
    repo.delete("p1")

    assert not repo.exists("p1")
    with pytest.raises(NotFound):
        repo.delete("p1")


def test_refresh_disallowed_makes_no_call(client):
    repo = Repository(client, "papers")

    with pytest.raises(RefreshNotAllowed):
        repo.refresh()

    assert client.calls == []


def test_refresh_allowed_calls_store(repo, client):
    repo.refresh()
    assert client.calls_to("indices.refresh") == [{"index": "papers"}]


def test_unreachable_store_raises_transport_failure(repo, client):
    client.unreachable = True

    with pytest.raises(TransportFailure):
        repo.get("p1")


def test_search_returns_bounded_page(repo, client):
    for i in range(5):
        repo.index(f"p{i}", Paper(f"Paper {i}", 2020 + i))

    page = repo.search({"match": {"title": "paper"}}, size=2, from_=1, sort=["year"])

    assert len(page) == 2
    assert page.total == 5
    assert [hit.id for hit in page] == ["p1", "p2"]
    sent = client.calls_to("search")[0]
    assert sent["query"] == {"match": {"title": "paper"}}
    assert sent["from_"] == 1
    assert sent["sort"] == ["year"]
    assert sent["seq_no_primary_term"] is True


def test_count_and_ensure_index(repo, client):
    assert repo.ensure_index(mappings={"properties": {"title": {"type": "text"}}}) is True
    assert repo.ensure_index() is False
    assert client.calls_to("indices.create")[0]["mappings"] == {"properties": {"title": {"type": "text"}}}

    repo.index("p1", Paper("Quantum"))
    assert repo.count() == 1
