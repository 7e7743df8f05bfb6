import pytest

from agents.marketing_validator import (
    build_dynamic_stopwords,
    jaccard,
    normalize_marketing_text,
    validate_marketing_text,
)
from utils.errors import ValidationRejection

TAG = "#NEARCON26"
GOOD = "✦ Embers stir in the Dark Forest tonight.\n✦ The oracle keeps score. #NEARCON26"


def reason_for(text, recent=()):
    with pytest.raises(ValidationRejection) as exc:
        validate_marketing_text(text, list(recent), TAG)
    return exc.value.reason


class TestMarketingValidator:
    def test_good_draft_passes(self):
        validate_marketing_text(GOOD, [], TAG)

    def test_single_line_without_hashtag_passes(self):
        validate_marketing_text("✦ The moss remembers every bold bet.", [], TAG)

    @pytest.mark.parametrize(
        "text,reason",
        [
            ("   ", "empty"),
            ("✦ forest one\n✦ forest two\n✦ forest three", "line_count_3"),
            ("Embers in the forest.", "bad_separator_lines"),
            ("✦ Embers in the forest.\nNo marker on this forest line", "bad_separator_lines"),
            ("✦ Embers in the forest www.example.com", "contains_url"),
            ("✦ alice.near walks the forest", "contains_contract_identifier"),
            ("✦ blackjack-v2 wakes the forest", "contains_contract_identifier"),
            ("✦ The forest wakes #other", "invalid_hashtag"),
            ("✦ The forest wakes #NEARCON26 #other", "invalid_hashtag"),
            ("✦ The forest #NEARCON26 wakes", "hashtag_not_at_end"),
            ("✦ The forest waits, check this profile", "explicit_profile_cta"),
            ("✦ Cards fly tonight", "missing_dark_forest_anchor"),
            ("✦ The oracle keeps spitting verses", "catchphrase_spitting_verses"),
        ],
    )
    def test_content_and_structure_rejections(self, text, reason):
        assert reason_for(text) == reason

    def test_first_word_reported_before_longer_prefixes(self):
        # first four long words match too; the one-word reason is reported
        recent = ["✦ Embers gather around the oracle table tonight in the forest"]
        text = "✦ Embers gather around the oracle again, different vibe in the forest"
        assert reason_for(text, recent) == "same_first_word:embers"

    def test_same_first_word(self):
        recent = ["✦ Embers drift over moss"]
        assert reason_for("✦ Embers whisper in the forest", recent) == "same_first_word:embers"

    def test_high_overlap_rejected(self):
        recent = ["✦ Tonight the oracle counts cards beside the forest fire"]
        text = "✦ Beside the forest fire, tonight the oracle counts cards"
        assert reason_for(text, recent) == "jaccard_1.00"

    def test_fresh_draft_against_recent_passes(self):
        recent = ["✦ Embers drift over moss", "✦ Tonight the oracle counts cards"]
        validate_marketing_text("✦ A new chronicle crawls out of the canopy.", recent, TAG)


class TestMarketingHelpers:
    def test_normalize_moves_hashtag_to_end(self):
        raw = "✦ The forest #NEARCON26 wakes  up\n✦ Embers glow"
        out = normalize_marketing_text(raw, TAG)
        assert out == "✦ The forest wakes up\n✦ Embers glow #NEARCON26"
        validate_marketing_text(out, [], TAG)

    def test_normalize_drops_foreign_hashtags(self):
        assert normalize_marketing_text("✦ The forest #other ", TAG) == "✦ The forest"
        assert normalize_marketing_text("", TAG) == ""

    def test_jaccard_of_empty_set_is_zero(self):
        assert jaccard(set(), {"forest"}) == 0.0
        assert jaccard({"forest", "moss"}, {"forest"}) == 0.5

    def test_dynamic_stopwords_need_repeats(self):
        assert build_dynamic_stopwords(["forest oracle", "forest embers"]) == {"forest"}
        assert build_dynamic_stopwords(["forest oracle"]) == set()
