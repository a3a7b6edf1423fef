# amaranth: UnusedElaboratable=no

import pytest
from amaranth import C, Cat, Elaboratable, Module, Signal

from boothtree.errors import ConfigError
from boothtree.evaluate import decode, sample_matrix
from boothtree.partial_product import PartialProductGenerator, TermKind
from boothtree.sign_extension import SignExtension

from conftest import operand_range


POLICIES = [SignExtension.BRUTE, SignExtension.STOP_BITS,
            SignExtension.COMPACT, SignExtension.COMPACT_RECT]
RECT_POLICIES = [SignExtension.BRUTE, SignExtension.STOP_BITS,
                 SignExtension.COMPACT_RECT]
SIGNS = [(False, False), (True, True), (True, False), (False, True)]
SIGN_IDS = ["uu", "ii", "iu", "ui"]


def generator(radix, widths, signs, policy):
    return PartialProductGenerator(Signal(widths[0], name="a"),
                                   Signal(widths[1], name="b"), radix,
                                   signed_multiplicand=signs[0],
                                   signed_multiplier=signs[1],
                                   sign_extension=policy)


def min_width(radix, signed):
    return radix.bit_length() - 1 + (1 if signed else 0)


def set_operands(ctx, gen, a, b):
    ctx.set(gen.multiplicand, a & (2**len(gen.multiplicand) - 1))
    ctx.set(gen.multiplier, b & (2**len(gen.multiplier) - 1))


@pytest.fixture
def exact_tb(mod, operand_values):
    gen = mod
    signs = (gen.signed_multiplicand.is_static_signed,
             gen.signed_multiplier.is_static_signed)
    values = operand_values((len(gen.multiplicand), len(gen.multiplier)),
                            signs)

    async def testbench(ctx):
        for (a, b) in values:
            set_operands(ctx, gen, a, b)
            assert decode(sample_matrix(ctx, gen.matrix)) == a * b

    return testbench


def square_configs():
    for radix in [2, 4, 8, 16, 32]:
        for policy in POLICIES:
            for signs, ids in zip(SIGNS, SIGN_IDS):
                # Radix 2 with a signed multiplicand and unsigned multiplier
                # is the one square case compact cannot handle.
                if policy == SignExtension.COMPACT and radix == 2 and \
                        signs == (True, False):
                    continue
                width = min_width(radix, True) + 1
                yield pytest.param(generator(radix, (width, width), signs,
                                             policy),
                                   id=f"r{radix}-{policy.value}-{ids}")


@pytest.mark.parametrize("mod", square_configs())
def test_square(sim, exact_tb):
    sim.run(testbenches=[exact_tb])


def skewed_configs():
    for radix in [2, 4, 8, 16, 32]:
        for policy in RECT_POLICIES:
            for signs, ids in zip(SIGNS, SIGN_IDS):
                wa = min_width(radix, signs[0]) + 1
                wb = min_width(radix, signs[1]) + 3
                yield pytest.param(generator(radix, (wa, wb), signs, policy),
                                   id=f"r{radix}-{policy.value}-{ids}-"
                                      f"{wa}x{wb}")
                yield pytest.param(generator(radix, (wb, wa), signs, policy),
                                   id=f"r{radix}-{policy.value}-{ids}-"
                                      f"{wb}x{wa}")


@pytest.mark.parametrize("mod", skewed_configs())
def test_skewed(sim, exact_tb):
    sim.run(testbenches=[exact_tb])


@pytest.mark.parametrize("mod", [
    generator(4, (6, 6), (True, True), SignExtension.COMPACT_RECT)
])
def test_radix4_signed_example(sim, operand_values):
    gen = sim.mod
    values = operand_values((6, 6), (True, True), limit=4096)
    assert len(values) == 4096

    async def testbench(ctx):
        set_operands(ctx, gen, -3, 6)
        assert decode(sample_matrix(ctx, gen.matrix)) == -18

        for (a, b) in values:
            set_operands(ctx, gen, a, b)
            assert decode(sample_matrix(ctx, gen.matrix)) == a * b

    sim.run(testbenches=[testbench])


def matrix_sum(matrix):
    # One expression for the whole matrix, so each operand pair costs a
    # single read.
    total = C(0, matrix.width)
    for row in matrix.rows:
        total = total + (Cat(*(t.value for t in row.terms)) << row.shift)
    return total[:matrix.width]


# Every operand pair up to a multiplicand width of 2*log2(r) + 3.
EXHAUSTIVE = [
    (4, 6, (True, True)), (4, 6, (False, False)),
    (4, 7, (True, True)), (4, 7, (True, False)),
    (8, 7, (True, True)), (8, 8, (False, True)),
    (8, 9, (True, True))
]


@pytest.mark.parametrize("mod", [
    pytest.param(generator(radix, (width, width), signs,
                           SignExtension.COMPACT_RECT),
                 id=f"r{radix}-w{width}-{SIGN_IDS[SIGNS.index(signs)]}")
    for (radix, width, signs) in EXHAUSTIVE
])
def test_exhaustive(sim):
    gen = sim.mod
    total = matrix_sum(gen.matrix)
    mask = 2**gen.matrix.width - 1
    a_width, b_width = len(gen.multiplicand), len(gen.multiplier)
    a_range = operand_range(a_width,
                            gen.signed_multiplicand.is_static_signed)
    b_range = operand_range(b_width, gen.signed_multiplier.is_static_signed)

    async def testbench(ctx):
        for a in a_range:
            ctx.set(gen.multiplicand, a & (2**a_width - 1))
            for b in b_range:
                ctx.set(gen.multiplier, b & (2**b_width - 1))
                assert ctx.get(total) == (a * b) & mask

    sim.run(testbenches=[testbench])


class _Pair(Elaboratable):
    """Two generators reading the same operands."""

    def __init__(self, radix, widths, signs, policies):
        a = Signal(widths[0], name="a")
        b = Signal(widths[1], name="b")
        self.gens = [
            PartialProductGenerator(a, b, radix, signed_multiplicand=signs[0],
                                    signed_multiplier=signs[1],
                                    sign_extension=p)
            for p in policies
        ]

    def elaborate(self, platform):
        m = Module()
        for i, gen in enumerate(self.gens):
            m.submodules[f"gen{i}"] = gen
        return m


@pytest.fixture
def agree_tb(mod, operand_values):
    brute, rect = mod.gens
    signs = (brute.signed_multiplicand.is_static_signed,
             brute.signed_multiplier.is_static_signed)
    values = operand_values((len(brute.multiplicand),
                             len(brute.multiplier)), signs)

    async def testbench(ctx):
        for (a, b) in values:
            set_operands(ctx, brute, a, b)
            expected = decode(sample_matrix(ctx, brute.matrix))
            assert expected == a * b
            assert decode(sample_matrix(ctx, rect.matrix)) == expected

    return testbench


def rectangular_configs():
    for radix in [2, 4, 8, 16, 32]:
        k = radix.bit_length() - 1
        for signs, ids in zip(SIGNS, SIGN_IDS):
            width = min_width(radix, True) + 2
            for skew in range(-3, 2*k + 1):
                if width + skew < min_width(radix, signs[1]):
                    continue
                yield pytest.param(
                    _Pair(radix, (width, width + skew), signs,
                          [SignExtension.BRUTE, SignExtension.COMPACT_RECT]),
                    id=f"r{radix}-w{width}-s{skew}-{ids}")


@pytest.mark.parametrize("mod", rectangular_configs())
def test_rectangular_matches_brute(sim, agree_tb):
    sim.run(testbenches=[agree_tb])


# (radix, width, skew) points where the folded carry of the last row runs
# into the first row's extension bits.
COLLISIONS = [
    (2, 5, 0), (4, 7, 1), (8, 7, 2), (16, 9, 3),
    (2, 5, 1), (4, 6, 2), (8, 9, 3), (16, 8, 4),
    (2, 5, 2), (4, 7, 3), (8, 8, 4), (16, 11, 5),
    (4, 6, 4), (8, 7, 5), (16, 10, 6),
    (8, 9, 6), (16, 9, 7),
    (16, 8, 8),
    (32, 11, 4), (32, 10, 5), (32, 9, 6), (32, 13, 7), (32, 12, 8),
    (32, 11, 9), (32, 10, 10)
]


@pytest.mark.parametrize("mod", [
    pytest.param(_Pair(radix, (width, width + skew), (False, False),
                       [SignExtension.BRUTE, SignExtension.COMPACT_RECT]),
                 id=f"r{radix}-w{width}-s{skew}")
    for (radix, width, skew) in COLLISIONS
])
def test_collisions(sim, agree_tb):
    sim.run(testbenches=[agree_tb])


def runtime_configs():
    for radix in [2, 4, 8, 16, 32]:
        for policy in POLICIES:
            width = min_width(radix, True) + 1
            yield pytest.param(
                generator(radix, (width, width),
                          (Signal(name="a_signed"), Signal(name="b_signed")),
                          policy),
                id=f"r{radix}-{policy.value}")
        yield pytest.param(
            generator(radix, (width, width + 3),
                      (Signal(name="a_signed"), Signal(name="b_signed")),
                      SignExtension.COMPACT_RECT),
            id=f"r{radix}-compact_rect-skewed")


@pytest.mark.parametrize("mod", runtime_configs())
def test_runtime_signedness(sim, operand_values):
    gen = sim.mod
    widths = (len(gen.multiplicand), len(gen.multiplier))

    async def testbench(ctx):
        for signs in SIGNS:
            ctx.set(gen.signed_multiplicand.select_signal, signs[0])
            ctx.set(gen.signed_multiplier.select_signal, signs[1])
            for (a, b) in operand_values(widths, signs, limit=256):
                set_operands(ctx, gen, a, b)
                assert decode(sample_matrix(ctx, gen.matrix)) == a * b

    sim.run(testbenches=[testbench])


@pytest.mark.parametrize("policy", POLICIES)
def test_shape_is_deterministic(policy):
    first = generator(8, (9, 9), (True, False), policy).matrix
    second = generator(8, (9, 9), (True, False), policy).matrix

    assert first.shape() == second.shape()
    assert [[t.kind for t in row.terms] for row in first.rows] == \
        [[t.kind for t in row.terms] for row in second.rows]


@pytest.mark.parametrize("mod", [
    generator(4, (8, 8), (True, True), SignExtension.STOP_BITS)
])
def test_shape_independent_of_values(sim):
    gen = sim.mod

    async def testbench(ctx):
        shapes = set()
        for (a, b) in [(0, 0), (-128, 127), (77, -3), (-1, -1)]:
            set_operands(ctx, gen, a, b)
            sampled = sample_matrix(ctx, gen.matrix)
            shapes.add(tuple((len(r.bits), r.shift) for r in sampled.rows))
        assert len(shapes) == 1

    sim.run(testbenches=[testbench])


def test_unextended_rows():
    gen = generator(4, (8, 8), (False, False), None)

    # 8-bit unsigned multiplier: five radix-4 digits, rows of 8 + 2 - 1 bits.
    assert gen.rows == 5
    assert gen.matrix.shape() == tuple((9, 2*i) for i in range(5))
    assert not gen.matrix.sign_extended
    assert gen.matrix.bias is None


def test_brute_width():
    gen = generator(4, (8, 8), (True, True), SignExtension.BRUTE)

    assert gen.matrix.width == 9 + 4*2
    assert all(row.extent == gen.matrix.width for row in gen.matrix.rows[:-1])
    assert gen.matrix.bias is None


@pytest.mark.parametrize("policy", [SignExtension.STOP_BITS,
                                    SignExtension.COMPACT,
                                    SignExtension.COMPACT_RECT])
@pytest.mark.parametrize("radix", [2, 4, 16])
def test_bias_is_width(policy, radix):
    gen = generator(radix, (8, 8), (False, False), policy)

    assert gen.matrix.bias == gen.matrix.width


def test_corrections_are_marked():
    gen = generator(4, (8, 8), (True, True), SignExtension.STOP_BITS)
    kinds = [t.kind for row in gen.matrix.rows for t in row.terms]

    assert TermKind.CORRECTION in kinds
    assert TermKind.INVERTED_SIGN in kinds
    assert TermKind.SIGN in kinds


def test_extend_twice():
    gen = generator(4, (8, 8), (False, False), SignExtension.BRUTE)

    with pytest.raises(ConfigError, match="already sign extended"):
        gen.extend(SignExtension.STOP_BITS)


def test_compact_needs_square():
    with pytest.raises(ConfigError, match="COMPACT_RECT"):
        generator(4, (8, 10), (False, False), SignExtension.COMPACT)


def test_compact_collision():
    with pytest.raises(ConfigError, match="COMPACT_RECT"):
        generator(2, (6, 6), (True, False), SignExtension.COMPACT)


@pytest.mark.parametrize("radix,widths,signs,param", [
    (4, (1, 4), (False, False), "multiplicand"),
    (16, (3, 8), (True, False), "multiplicand"),
    (16, (8, 4), (False, True), "multiplier"),
    (8, (8, 2), (False, False), "multiplier"),
    (6, (8, 8), (False, False), "radix")
])
def test_narrow_operands(radix, widths, signs, param):
    with pytest.raises(ConfigError, match=param):
        generator(radix, widths, signs, SignExtension.COMPACT_RECT)


@pytest.mark.parametrize("signs,param", [
    ((Signal(2), False), "signed_multiplicand"),
    ((False, "yes"), "signed_multiplier"),
    ((1, False), "signed_multiplicand")
])
def test_bad_signedness(signs, param):
    with pytest.raises(ConfigError, match=param):
        generator(4, (8, 8), signs, SignExtension.COMPACT_RECT)


@pytest.mark.parametrize("mod", [
    generator(32, (7, 7), (True, False), None)
])
def test_multiples(sim):
    gen = sim.mod
    selector = gen.selector
    width = len(selector.multiples[0])

    async def testbench(ctx):
        for a in range(-64, 64):
            ctx.set(gen.multiplicand, a & 0x7f)
            for m, multiple in enumerate(selector.multiples, start=1):
                assert ctx.get(multiple) == (m * a) & (2**width - 1)

    sim.run(testbenches=[testbench])
