from canopy_core.search.keywords import COLOR_KEYWORDS, extract_keywords


def test_extract_keywords_splits_colors_and_objects():
    keywords = extract_keywords("Red Lingerie")
    assert keywords.colors == ("red",)
    assert keywords.objects == ("lingerie",)
    assert keywords.all == ("red", "lingerie")
    assert keywords.is_visual_search()


def test_short_tokens_are_not_objects():
    keywords = extract_keywords("a tv on it")
    assert keywords.objects == ()
    assert keywords.all == ("a", "tv", "on", "it")
    assert not keywords.has_objects


def test_multi_word_colors_are_not_recognized():
    keywords = extract_keywords("light blue shirt")
    assert keywords.colors == ("blue",)
    assert keywords.objects == ("light", "shirt")


def test_german_colors_are_in_vocabulary():
    keywords = extract_keywords("schwarz kleid")
    assert keywords.colors == ("schwarz",)
    assert "weiß" in COLOR_KEYWORDS
    assert "grün" in COLOR_KEYWORDS


def test_visual_hint_words_mark_visual_search():
    assert extract_keywords("photo of airpods").is_visual_search()
    assert extract_keywords("man on bike").is_visual_search()
    assert not extract_keywords("quarterly report").is_visual_search()


def test_empty_query_yields_empty_sets():
    keywords = extract_keywords("   ")
    assert keywords.colors == ()
    assert keywords.objects == ()
    assert keywords.all == ()
    assert not keywords.is_visual_search()
