from genocombo.banding import band_width, banded_combos, banded_combos_with_homozygous, homozygous_combos
from genocombo.genotypes import enumerate_genotypes
from genocombo.likelihood import rank_genotypes
from genocombo.models import SNP, Allele, SampleLikelihoods, reference_allele

A = reference_allele("A")
T = Allele(kind=SNP, sequence="T")
GENOTYPES = enumerate_genotypes(2, [A, T])  # A/A, A/T, T/T


def make_table(name: str, lls) -> SampleLikelihoods:
    return rank_genotypes(name, 2, list(zip(GENOTYPES, lls)))


def test_band_width_respects_rank_and_threshold():
    table = make_table("S", [-1.0, -3.0, -40.0])
    assert band_width(table, 3, 20.0) == 2
    assert band_width(table, 1, 20.0) == 1
    assert band_width(table, 3, 0.0) == 1
    assert band_width(table, 3, 100.0) == 3


def test_joint_best_comes_first_and_scores_descend():
    tables = [make_table("S1", [-30.0, -8.0, -1.0]), make_table("S2", [-1.0, -6.0, -30.0])]
    combos = banded_combos(tables, bandwidth=3, band_threshold=50.0, max_combo_step=2)
    assert str(combos[0]) == "S1:T/T S2:A/A"
    scores = [c.data_log_likelihood for c in combos]
    assert scores == sorted(scores, reverse=True)
    assert len({c.key for c in combos}) == len(combos)


def test_step_limit_bounds_samples_off_best():
    tables = [make_table(f"S{i}", [-1.0, -2.0, -3.0]) for i in range(4)]
    combos = banded_combos(tables, bandwidth=3, band_threshold=50.0, max_combo_step=1, max_combos=1000)
    for c in combos:
        assert sum(1 for e in c.entries if e.genotype_index) <= 1
    # joint best plus two alternatives per sample
    assert len(combos) == 1 + 4 * 2


def test_default_cap():
    tables = [make_table(f"S{i}", [-1.0, -1.5, -2.0]) for i in range(3)]
    combos = banded_combos(tables, bandwidth=2, band_threshold=50.0, max_combo_step=3)
    assert len(combos) <= 1 + 2 * 3 * 3


def test_narrow_band_still_yields_homozygous_anchors():
    tables = [make_table("S1", [-30.0, -8.0, -1.0]), make_table("S2", [-1.0, -6.0, -30.0])]
    banded = banded_combos(tables, bandwidth=1, band_threshold=0.0, max_combo_step=2)
    assert [str(c) for c in banded] == ["S1:T/T S2:A/A"]

    combos = banded_combos_with_homozygous(
        tables, {2: GENOTYPES}, [A, T], bandwidth=1, band_threshold=0.0, max_combo_step=2
    )
    names = [str(c) for c in combos]
    assert "S1:A/A S2:A/A" in names
    assert "S1:T/T S2:T/T" in names
    assert len(combos) == 3


def test_homozygous_anchor_not_duplicated():
    tables = [make_table("S1", [-1.0, -5.0, -9.0]), make_table("S2", [-1.0, -5.0, -9.0])]
    combos = banded_combos_with_homozygous(
        tables, {2: GENOTYPES}, [A, T], bandwidth=3, band_threshold=50.0, max_combo_step=2
    )
    assert len({c.key for c in combos}) == len(combos)
    assert sum(1 for c in combos if c.is_homozygous()) == 2


def test_homozygous_combos_one_per_allele():
    tables = [make_table("S1", [-1.0, -5.0, -9.0])]
    combos = homozygous_combos(tables, {2: GENOTYPES}, [A, T])
    assert [str(c) for c in combos] == ["S1:A/A", "S1:T/T"]
    assert all(c.is_homozygous() for c in combos)


def test_samples_without_genotypes_are_left_out():
    empty = SampleLikelihoods(name="E", ploidy=2, ranked=())
    tables = [make_table("S1", [-1.0, -2.0, -3.0]), empty]
    combos = banded_combos(tables, bandwidth=2, band_threshold=5.0, max_combo_step=1)
    assert all(len(c.entries) == 1 for c in combos)
    assert banded_combos([empty], bandwidth=2, band_threshold=5.0, max_combo_step=1) == []
