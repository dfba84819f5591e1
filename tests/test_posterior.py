import math

import pytest

from genocombo.errors import EmptyCandidateSetError
from genocombo.models import SNP, Allele, ComboEntry, Genotype, GenotypeCombo, GenotypeComboResult, reference_allele
from genocombo.posterior import (
    aggregate,
    marginal_log_probs,
    posterior_normalizer,
    probability_of_variation,
    select_best_combo,
    sort_results,
    trim_results,
)

A = reference_allele("A")
T = Allele(kind=SNP, sequence="T")
AA = Genotype(alleles=(A, A))
AT = Genotype(alleles=(A, T))
TT = Genotype(alleles=(T, T))


def make_result(score: float, *genotypes: Genotype) -> GenotypeComboResult:
    entries = tuple(
        ComboEntry(sample=f"S{i + 1}", genotype_index=i, genotype=g, log_likelihood=score)
        for i, g in enumerate(genotypes)
    )
    return GenotypeComboResult(
        combo=GenotypeCombo(entries=entries),
        data_log_likelihood=score,
        prior_log_prob=0.0,
        prior_log_prob_given_frequency=0.0,
        prior_log_prob_frequency=0.0,
    )


def test_sort_descending_and_stable():
    a = make_result(-2.0, AT)
    b = make_result(-1.0, AA)
    c = make_result(-2.0, TT)
    assert sort_results([a, b, c]) == [b, a, c]


def test_trim_keeps_homozygous_at_tail():
    hets = [make_result(-float(i), AT, AT) for i in range(8)]
    homs = [make_result(-100.0, AA, AA), make_result(-200.0, TT, TT)]
    kept = trim_results(sort_results(hets + homs), 5)
    assert len(kept) == 5
    assert [r for r in kept if r.is_homozygous()] == homs
    assert [r for r in kept if not r.is_homozygous()] == hets[:3]


def test_trim_keeps_homozygous_at_head():
    top = make_result(0.0, AA, AA)
    hets = [make_result(-float(i), AT, AT) for i in range(1, 9)]
    last = make_result(-100.0, TT, TT)
    kept = trim_results(sort_results([top] + hets + [last]), 5)
    assert len(kept) == 5
    assert kept[0] is top
    assert last in kept
    assert [r for r in kept if not r.is_homozygous()] == hets[:3]


def test_trim_keeps_all_homozygous_beyond_depth():
    homs = [make_result(-float(i), AA) for i in range(4)]
    hets = [make_result(-10.0, AT)]
    kept = trim_results(sort_results(homs + hets), 2)
    assert kept == homs


def test_trim_disabled_or_not_needed():
    results = [make_result(-float(i), AT) for i in range(4)]
    assert trim_results(results, 0) == results
    assert trim_results(results, 10) == results


def test_marginals_normalize_per_sample():
    results = sort_results(
        [
            make_result(-1.0, TT, AA),
            make_result(-3.0, AT, AA),
            make_result(-20.0, AA, AA),
            make_result(-25.0, TT, TT),
        ]
    )
    z = posterior_normalizer(results)
    marginals = marginal_log_probs(results, z)
    for sample in ("S1", "S2"):
        assert sum(math.exp(v) for v in marginals[sample].values()) == pytest.approx(1.0)
    assert math.exp(marginals["S1"][TT]) > 0.8


def test_probability_of_variation_bounds():
    only_hom = [make_result(-1.0, AA, AA)]
    assert probability_of_variation(only_hom, posterior_normalizer(only_hom)) == pytest.approx(0.0)

    mixed = sort_results([make_result(-1.0, TT, AA), make_result(-30.0, AA, AA)])
    p = probability_of_variation(mixed, posterior_normalizer(mixed))
    assert 0.99 < p <= 1.0


def test_best_combo_rule():
    het = make_result(-5.0, AT, AA)
    hom = make_result(-1.0, AA, AA)
    ordered = [hom, het]
    assert select_best_combo(ordered, 0.4) is het
    assert select_best_combo(ordered, 0.4, variant_threshold=0.5) is hom
    assert select_best_combo([hom], 0.0) is hom
    with pytest.raises(EmptyCandidateSetError):
        select_best_combo([], 0.0)


def test_aggregate_summary():
    results = [make_result(-30.0, AA, AA), make_result(-1.0, TT, AA), make_result(-4.0, AT, AA)]
    summary = aggregate(results, posterior_integration_depth=10, variant_threshold=0.5)
    assert summary.results[0] is results[1]
    assert summary.best is results[1]
    assert summary.p_var > 0.99
    assert summary.normalizer == pytest.approx(posterior_normalizer(results))


def test_aggregate_empty_raises():
    with pytest.raises(EmptyCandidateSetError):
        aggregate([])
