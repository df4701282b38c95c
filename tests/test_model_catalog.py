from chatrelay.domain import ModelEntry
from chatrelay.model_catalog import ModelCatalog

CLAUDE = ModelEntry('claude', 'anthropic/claude-3.5-sonnet', 2)
GPT = ModelEntry('gpt', 'openai/gpt-4.1', 0)
GEMINI = ModelEntry('gemini', 'google/gemini-2.5-pro', 1)
GROK = ModelEntry('grok', 'x-ai/grok-3', 2)
DEFAULT = ModelEntry('default', 'openrouter/auto')


def make_catalog():
    return ModelCatalog([CLAUDE, GPT, GEMINI, GROK], DEFAULT)


def test_keyword_is_removed_and_model_selected():
    text, model = make_catalog().select('Hello #gpt there')
    assert model == GPT
    assert text == 'Hello  there'


def test_no_keyword_keeps_text_and_uses_default():
    original = 'just a normal question #notamodel'
    text, model = make_catalog().select(original)
    assert text == original
    assert model == DEFAULT
    # running it again changes nothing
    assert make_catalog().select(text) == (original, DEFAULT)


def test_keyword_match_is_case_insensitive():
    text, model = make_catalog().select('ask #GPT about it')
    assert model == GPT
    assert text == 'ask  about it'


def test_first_model_in_catalog_order_wins():
    # gemini appears first in the text, claude comes first in the catalog
    text, model = make_catalog().select('#gemini or #claude?')
    assert model == CLAUDE
    assert text == '#gemini or ?'


def test_only_first_occurrence_is_removed():
    text, model = make_catalog().select('#gpt and #gpt')
    assert model == GPT
    assert text == ' and #gpt'


def test_fallbacks_sorted_by_priority_ties_in_registration_order():
    fallbacks = make_catalog().fallback_models()
    assert [m.keyword for m in fallbacks] == ['gemini', 'claude', 'grok']
    assert GPT not in fallbacks


def test_find_by_keyword():
    c = make_catalog()
    assert c.find_by_keyword('#Claude') == CLAUDE
    assert c.find_by_keyword('nope') is None


def test_keyword_after_length_changing_characters():
    # 'İ'.lower() is two code points
    text, model = make_catalog().select('İİ #gpt there')
    assert model == GPT
    assert text == 'İİ  there'
    text, model = make_catalog().select('straße İstanbul #GPT ok')
    assert model == GPT
    assert text == 'straße İstanbul  ok'
