from data_designer_prose_polisher.config import ProsePolisherColumnConfig


class TestProsePolisherColumnConfig:
    def test_defaults(self):
        config = ProsePolisherColumnConfig(name="reply_polished", target_column="reply")
        assert config.column_type == "prose-polisher"
        assert config.required_columns == ["reply"]
        assert config.side_effect_columns == []
        assert config.capitalize
        assert config.rules_path is None
        assert config.extra_rules == []

    def test_extra_rules(self):
        config = ProsePolisherColumnConfig(
            name="reply_polished",
            target_column="reply",
            extra_rules=[{"scriptName": "Fox", "findRegex": "fox", "replaceString": "wolf"}],
            seed=7,
        )
        assert config.extra_rules[0]["findRegex"] == "fox"
        assert config.seed == 7
