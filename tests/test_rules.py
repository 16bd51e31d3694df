import json
import random

import pytest

from data_designer_prose_polisher.errors import ConfigurationError, RuleEditError
from data_designer_prose_polisher.rules import (
    DISPLAY_PREFIX,
    RULE_ID_PREFIX,
    Rule,
    RuleStore,
    apply_rules,
    capitalize_sentences,
    load_static_rules,
    static_rule_id,
)
from data_designer_prose_polisher.settings import Settings


def _rule(find, replace, id=None, name=None, **kwargs) -> Rule:
    return Rule(id=id or f"r-{find}", script_name=name or find, find_regex=find, replace_string=replace, **kwargs)


class TestApplyRules:
    def test_no_rules_is_identity(self):
        assert apply_rules("Nothing to see here.", []) == "Nothing to see here."

    def test_literal_replacement_is_case_insensitive(self):
        assert apply_rules("Cat and cat.", [_rule("cat", "dog")]) == "dog and dog."

    def test_random_template_picks_each_option(self):
        rule = _rule("cat", "{{random:dog, bird}}")
        seen = {apply_rules("cat", [rule], random.Random(seed)) for seed in range(50)}
        assert seen == {"dog", "bird"}

    def test_random_template_keeps_surrounding_text(self):
        rule = _rule("cat", "a {{random:dog}}!")
        assert apply_rules("cat", [rule]) == "a dog!"

    def test_backreferences(self):
        rule = _rule(r"(\w+) and (\w+)", "$2 and $1")
        assert apply_rules("salt and pepper", [rule]) == "pepper and salt"

    def test_backreferences_inside_random_options(self):
        rule = _rule(r"\b(her|his) breath hitched", "{{random:$1 breathing stalled}}")
        assert apply_rules("Her breath hitched.", [rule]) == "Her breathing stalled."

    def test_missing_group_expands_to_empty(self):
        rule = _rule(r"(\w+)!", "$1$3.")
        assert apply_rules("stop!", [rule]) == "stop."

    def test_invalid_regex_is_skipped(self):
        rules = [_rule("(unclosed", "x"), _rule("cat", "dog")]
        assert apply_rules("cat", rules) == "dog"

    def test_rules_apply_sequentially(self):
        rules = [_rule("alpha", "beta"), _rule("beta", "gamma")]
        assert apply_rules("alpha", rules) == "gamma"
        assert apply_rules("alpha", list(reversed(rules))) == "beta"

    def test_empty_text(self):
        assert apply_rules("", [_rule("cat", "dog")]) == ""


class TestCapitalizeSentences:
    def test_capitalizes_sentence_starts(self):
        assert capitalize_sentences("hello there. this is fine! ok? yes") == "Hello there. This is fine! Ok? Yes"

    def test_looks_past_tags(self):
        assert capitalize_sentences("<p>hello</p>") == "<p>Hello</p>"
        assert capitalize_sentences("done. <i>next</i>") == "Done. <i>Next</i>"

    def test_leaves_mid_sentence_words_alone(self):
        assert capitalize_sentences("The cat sat.") == "The cat sat."


class TestLoadStaticRules:
    def test_bundled_rules(self):
        rules = load_static_rules()
        assert len(rules) == 10
        assert all(r.is_static for r in rules)
        assert all(r.id.startswith(RULE_ID_PREFIX) and r.id.endswith("_static") for r in rules)
        assert len({r.id for r in rules}) == len(rules)

    def test_bundled_rule_rewrites_padded_pauses(self):
        assert apply_rules("Well.......", load_static_rules()) == "Well..."

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_static_rules(tmp_path / "missing.json")

    @pytest.mark.parametrize("content", ["not json", "{}", '[{"scriptName": "x"}]'])
    def test_malformed_file(self, tmp_path, content):
        path = tmp_path / "rules.json"
        path.write_text(content)
        with pytest.raises(ConfigurationError):
            load_static_rules(path)

    def test_overrides_and_duplicate_names(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([
            {"scriptName": "Same", "findRegex": "a", "replaceString": "b"},
            {"scriptName": "Same", "findRegex": "c", "replaceString": "d"},
        ]))
        first_id = static_rule_id("Same")
        rules = load_static_rules(path, {first_id: {"disabled": True}})
        assert rules[0].id == first_id
        assert rules[0].disabled
        assert rules[1].id != first_id
        assert not rules[1].disabled


class TestRuleStore:
    @pytest.fixture
    def store(self, persister):
        static = [_rule("cat", "dog", id=static_rule_id("Cat"), is_static=True)]
        return RuleStore(Settings(), static_rules=static, persister=persister)

    def test_loads_saved_dynamic_rules_and_drops_malformed(self):
        settings = Settings(dynamic_rules=[
            {"id": "DYN_1", "scriptName": "Fox", "findRegex": "fox", "replaceString": "wolf"},
            {"scriptName": "", "findRegex": "x"},
        ])
        store = RuleStore(settings)
        assert [r.id for r in store.dynamic_rules] == ["DYN_1"]

    def test_static_before_dynamic(self, store):
        store.create_rule("Dog", "dog", "wolf")
        assert store.apply_replacements("cat") == "wolf"

    def test_enable_flags(self, store):
        store.create_rule("Fox", "fox", "wolf")
        store.settings.is_static_enabled = False
        assert store.apply_replacements("cat fox") == "cat wolf"
        store.settings.is_static_enabled = True
        store.settings.is_dynamic_enabled = False
        assert store.apply_replacements("cat fox") == "dog fox"

    def test_create_rule_persists(self, store, persister):
        rule = store.create_rule("Fox", "fox", "wolf")
        assert rule.id.startswith("DYN_")
        assert rule.is_new
        assert persister.patches[-1] == {"dynamicRules": [rule.to_payload()]}

    def test_create_rejects_bad_input(self, store):
        with pytest.raises(RuleEditError):
            store.create_rule("", "fox", "wolf")
        with pytest.raises(RuleEditError):
            store.create_rule("Broken", "(fox", "wolf")

    def test_static_rules_only_toggle(self, store, persister):
        static_id = store.static_rules[0].id
        with pytest.raises(RuleEditError):
            store.update_rule(static_id, find_regex="kitten")
        with pytest.raises(RuleEditError):
            store.delete_rule(static_id)
        store.toggle_rule(static_id)
        assert store.get(static_id).disabled
        assert persister.patches[-1] == {"staticRuleOverrides": {static_id: {"disabled": True}}}
        assert store.apply_replacements("cat") == "cat"

    def test_update_and_delete_dynamic(self, store):
        rule = store.create_rule("Fox", "fox", "wolf")
        store.update_rule(rule.id, replace_string="hound")
        assert store.apply_replacements("fox") == "hound"
        assert store.delete_rule(rule.id)
        assert not store.delete_rule(rule.id)
        assert store.settings.dynamic_rules == []

    def test_update_missing_rule(self, store):
        with pytest.raises(RuleEditError):
            store.update_rule("nope", disabled=True)
        assert store.toggle_rule("nope") is None

    def test_clear_new_flags(self, store):
        store.create_rule("Fox", "fox", "wolf")
        store.clear_new_flags()
        assert not any(r.is_new for r in store.dynamic_rules)


class TestGlobalExport:
    @pytest.fixture
    def store(self):
        static = [_rule("cat", "dog", id=static_rule_id("Cat"), name="Cat", is_static=True)]
        store = RuleStore(Settings(), static_rules=static)
        store.create_rule("Fox", "fox", "wolf")
        return store

    def test_export_appends_prefixed_rules(self, store):
        foreign = [{"id": "user-1", "scriptName": "Mine", "findRegex": "x", "replaceString": "y"}]
        exported = store.export_for_global_integration(foreign)
        assert exported[0] == foreign[0]
        ours = exported[1:]
        assert len(ours) == 2
        assert all(r["id"].startswith(RULE_ID_PREFIX) for r in ours)
        assert ours[0]["scriptName"] == f"{DISPLAY_PREFIX}Cat"
        assert ours[0]["placement"] == [0, 2, 3, 5, 6]
        assert ours[0]["markdownOnly"] and ours[0]["promptOnly"]

    def test_export_is_idempotent(self, store):
        foreign = [{"id": "user-1", "scriptName": "Mine", "findRegex": "x", "replaceString": "y"}]
        once = store.export_for_global_integration(foreign)
        twice = store.export_for_global_integration(once)
        assert twice == once

    def test_integration_off_removes_engine_rules(self, store):
        once = store.export_for_global_integration([{"id": "user-1"}])
        store.settings.integrate_with_global_regex = False
        assert store.export_for_global_integration(once) == [{"id": "user-1"}]
