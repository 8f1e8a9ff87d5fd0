"""
Feature keys derived from a draw.

Every trackable property of a draw (a digit, a pair, a sum, the whole
combination, a symbol-class pattern) is a FeatureKey: a (kind, value) tuple
whose kind is one of the closed set in FeatureKind.ALL. The value payload
for each kind:

    digit          int d
    position_pair  (i, j, a, b)  digit a at position i, b at position j
    box_pair       (a, b)        unordered, a <= b
    sum            int
    root_sum       int           digital root of the sum
    straight       digit tuple
    box            sorted digit tuple
    vtrac          tuple of VTrac groups
    parity         "EOE" style string, one letter per position
    high_low       "HLH" style string, one letter per position
    combo_type     "single" | "double" | "triple"
"""
from collections import namedtuple
from itertools import combinations

from pick3.errors import ValidationError


class FeatureKind:
    DIGIT = "digit"
    POSITION_PAIR = "position_pair"
    BOX_PAIR = "box_pair"
    SUM = "sum"
    ROOT_SUM = "root_sum"
    STRAIGHT = "straight"
    BOX = "box"
    VTRAC = "vtrac"
    PARITY = "parity"
    HIGH_LOW = "high_low"
    COMBO_TYPE = "combo_type"

    ALL = (
        DIGIT, POSITION_PAIR, BOX_PAIR, SUM, ROOT_SUM, STRAIGHT, BOX,
        VTRAC, PARITY, HIGH_LOW, COMBO_TYPE,
    )
    # Many-to-one symbol-class groupings used by the type score
    CLASS_KINDS = (PARITY, HIGH_LOW, COMBO_TYPE)


class FeatureKey(namedtuple("FeatureKey", ["kind", "value"])):
    __slots__ = ()

    def __new__(cls, kind, value):
        if kind not in FeatureKind.ALL:
            raise ValidationError(f"Unknown feature kind {kind!r}")
        if isinstance(value, list):
            value = tuple(value)
        return super().__new__(cls, kind, value)

    def label(self):
        v = self.value
        if self.kind == FeatureKind.POSITION_PAIR:
            i, j, a, b = v
            return f"{pair_name(i, j)} {a}{b}"
        if isinstance(v, tuple):
            return "".join(str(x) for x in v)
        return str(v)


PAIR_NAMES = {(0, 1): "front", (0, 2): "split", (1, 2): "back"}

COMBO_SINGLE = "single"
COMBO_DOUBLE = "double"
COMBO_TRIPLE = "triple"


def pair_name(i, j):
    return PAIR_NAMES.get((i, j), f"p{i}{j}")


def digital_root(n):
    return n % 9 or (0 if n == 0 else 9)


def vtrac_group(d, alphabet=10):
    """1&6 -> 1, 2&7 -> 2, ..., 5&0 -> 5 for a 10-symbol alphabet."""
    half = max(alphabet // 2, 1)
    return d % half or half


def mirror(digits, alphabet=10):
    """Each digit shifted by half the alphabet: 0<->5, 1<->6, ..."""
    half = alphabet // 2
    return tuple((d + half) % alphabet for d in digits)


def parity_pattern(digits):
    return "".join("E" if d % 2 == 0 else "O" for d in digits)


def high_low_pattern(digits, alphabet=10):
    cut = alphabet // 2
    return "".join("H" if d >= cut else "L" for d in digits)


def combo_type(digits):
    distinct = len(set(digits))
    if distinct == len(digits):
        return COMBO_SINGLE
    if distinct == 1:
        return COMBO_TRIPLE
    return COMBO_DOUBLE


def class_value(kind, digits, alphabet=10):
    """Symbol-class pattern of one of FeatureKind.CLASS_KINDS."""
    if kind == FeatureKind.PARITY:
        return parity_pattern(digits)
    if kind == FeatureKind.HIGH_LOW:
        return high_low_pattern(digits, alphabet)
    if kind == FeatureKind.COMBO_TYPE:
        return combo_type(digits)
    raise ValidationError(f"{kind!r} is not a symbol-class kind")


def position_pairs(digits):
    return [(i, j, digits[i], digits[j]) for i, j in combinations(range(len(digits)), 2)]


def extract_features(digits, game):
    """
    All FeatureKeys present in a digit tuple, each once, in a stable order.
    Digits are assumed already validated against the game.
    """
    digits = tuple(digits)
    total = sum(digits)
    keys = []
    for d in sorted(set(digits)):
        keys.append(FeatureKey(FeatureKind.DIGIT, d))
    for p in position_pairs(digits):
        keys.append(FeatureKey(FeatureKind.POSITION_PAIR, p))
    for a, b in sorted({tuple(sorted(p)) for p in combinations(digits, 2)}):
        keys.append(FeatureKey(FeatureKind.BOX_PAIR, (a, b)))
    keys.append(FeatureKey(FeatureKind.SUM, total))
    keys.append(FeatureKey(FeatureKind.ROOT_SUM, digital_root(total)))
    keys.append(FeatureKey(FeatureKind.STRAIGHT, digits))
    keys.append(FeatureKey(FeatureKind.BOX, tuple(sorted(digits))))
    keys.append(FeatureKey(FeatureKind.VTRAC,
                           tuple(vtrac_group(d, game.alphabet) for d in digits)))
    for kind in FeatureKind.CLASS_KINDS:
        keys.append(FeatureKey(kind, class_value(kind, digits, game.alphabet)))
    return keys


def constituent_keys(digits):
    """Features whose lateness drives the skip-pressure factor."""
    digits = tuple(digits)
    keys = [FeatureKey(FeatureKind.DIGIT, d) for d in sorted(set(digits))]
    keys.append(FeatureKey(FeatureKind.STRAIGHT, digits))
    keys.append(FeatureKey(FeatureKind.BOX, tuple(sorted(digits))))
    return keys


def keys_of_kind(game, kind):
    """The finite, sorted universe of keys of one kind."""
    if kind not in FeatureKind.ALL:
        raise ValidationError(f"Unknown feature kind {kind!r}")
    return sorted(k for k in game.feature_universe() if k.kind == kind)
