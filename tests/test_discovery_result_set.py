from __future__ import annotations

from groupcast.discovery.result_set import MergeReport, ResultSet
from groupcast.models import CandidateEntity, DiscoverySource


def test_first_discovery_order_is_kept_and_ids_never_duplicate() -> None:
    results = ResultSet()
    results.merge(
        [CandidateEntity("1", "One"), CandidateEntity("2", "Two"), CandidateEntity("1", "Uno")],
        DiscoverySource.DOM,
    )

    assert [entry.id for entry in results.to_list()] == ["1", "2"]
    assert results.get("1") == CandidateEntity("1", "One")


def test_higher_precedence_source_replaces_name_in_place() -> None:
    results = ResultSet()
    results.add(CandidateEntity("1", "From links"), DiscoverySource.DOM)
    results.add(CandidateEntity("2", "Second"), DiscoverySource.DOM)

    report = results.merge([CandidateEntity("1", "From network")], DiscoverySource.INTERCEPTED)

    assert report == MergeReport(added=0, renamed=1, ignored=0)
    assert results.to_list() == [CandidateEntity("1", "From network"), CandidateEntity("2", "Second")]
    assert results.source_of("1") is DiscoverySource.INTERCEPTED


def test_lower_or_equal_precedence_never_overwrites() -> None:
    results = ResultSet()
    results.add(CandidateEntity("1", "From network"), DiscoverySource.INTERCEPTED)

    assert not results.add(CandidateEntity("1", "From script"), DiscoverySource.INLINE_SCRIPT)
    assert not results.add(CandidateEntity("1", "Again"), DiscoverySource.INTERCEPTED)
    assert results.get("1").name == "From network"
    assert "1" in results
    assert len(results) == 1


def test_source_precedence_order() -> None:
    assert (
        DiscoverySource.DOM.precedence
        < DiscoverySource.INLINE_SCRIPT.precedence
        < DiscoverySource.INTERCEPTED.precedence
    )
