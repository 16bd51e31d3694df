import random
from dataclasses import dataclass

from data_designer_prose_polisher.sampling import uniform_choice, weighted_choice
from data_designer_prose_polisher.settings import ChaosOption


@dataclass
class _Option:
    name: str
    weight: object = 1


class TestWeightedChoice:
    def test_empty_pool(self):
        assert weighted_choice([]) is None

    def test_equal_weights_are_uniform(self):
        options = [_Option("a"), _Option("b"), _Option("c")]
        rng = random.Random(1234)
        draws = [weighted_choice(options, rng).name for _ in range(10_000)]
        for name in "abc":
            assert abs(draws.count(name) / len(draws) - 1 / 3) < 0.03

    def test_heavier_option_dominates(self):
        options = [_Option("light", 1), _Option("heavy", 99)]
        rng = random.Random(7)
        draws = [weighted_choice(options, rng).name for _ in range(2_000)]
        assert draws.count("heavy") > 1_800

    def test_invalid_weights_count_as_one(self):
        options = [_Option("zero", 0), _Option("negative", -5), _Option("text", "abc")]
        rng = random.Random(99)
        draws = {weighted_choice(options, rng).name for _ in range(500)}
        assert draws == {"zero", "negative", "text"}

    def test_works_with_chaos_options(self):
        options = [ChaosOption(api="openai", model="a", weight=3), ChaosOption(api="groq", model="b", weight=1)]
        assert weighted_choice(options, random.Random(0)) in options

    def test_draw_at_zero_picks_first(self):
        class _Zero(random.Random):
            def random(self):
                return 0.0

        options = [_Option("first"), _Option("second")]
        assert weighted_choice(options, _Zero()).name == "first"


class TestUniformChoice:
    def test_covers_every_option(self):
        rng = random.Random(3)
        assert {uniform_choice(["x", "y", "z"], rng) for _ in range(200)} == {"x", "y", "z"}
