import math

import pytest

from blueprints.retrieval.search import similarity_percentage, to_vector_literal


def test_vector_literal_format():
    assert to_vector_literal([0.5, -1, 2.25]) == "[0.5,-1.0,2.25]"
    assert to_vector_literal([]) == "[]"


def test_vector_literal_keeps_full_precision():
    x = 0.1 + 0.2
    assert to_vector_literal([x]) == f"[{x!r}]"


@pytest.mark.parametrize(
    "distance, expected",
    [
        (0.0, 100.0),
        (0.123, 87.7),
        (0.5, 50.0),
        (1.0, 0.0),
        (1.7, 0.0),
        (-0.2, 100.0),
        (None, 0.0),
        (math.nan, 0.0),
    ],
)
def test_similarity_percentage(distance, expected):
    assert similarity_percentage(distance) == expected


def test_similarity_is_non_increasing_in_distance():
    scores = [similarity_percentage(d / 20) for d in range(0, 41)]
    assert scores == sorted(scores, reverse=True)
