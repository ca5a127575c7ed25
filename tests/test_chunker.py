from __future__ import annotations

import re

import pytest

from wechat_pipeline.chunker import chunk_text, split_into_chunks, split_sentences


def _squash(text: str) -> str:
    return re.sub(r"\s+", "", text)


def test_empty_and_blank_input_yield_no_chunks() -> None:
    assert chunk_text("") == []
    assert chunk_text("   \n\n\t ") == []


def test_terminators_stay_with_their_sentence() -> None:
    assert split_sentences("你好。今天好吗？Fine.\nNext") == ["你好。", "今天好吗？", "Fine.\n", "Next"]


def test_leading_terminators_are_not_dropped() -> None:
    assert split_sentences("\n\nHello.") == ["\n\n", "Hello."]


def test_sentences_are_packed_up_to_the_limit() -> None:
    chunks = chunk_text("第一句。第二句！第三句？", limit=8)
    assert chunks == ["第一句。第二句！", "第三句？"]


def test_oversized_sentence_is_kept_whole() -> None:
    long_sentence = "A" * 350 + "."
    chunks = chunk_text(long_sentence + " Short one.", limit=300)
    assert chunks == [long_sentence, "Short one."]
    assert len(chunks[0]) > 300


def test_chunks_reconstruct_text_and_respect_limit() -> None:
    text = (
        "小明走进了科学馆。他看见一只巨大的恐龙骨架！那是什么恐龙？\n"
        "讲解员说：这是霸王龙；它生活在六千多万年前。"
        "Kids asked many questions. Why so big? Nobody knew!\n\n"
    ) * 12
    chunks = chunk_text(text, limit=60)

    assert "".join(_squash(c) for c in chunks) == _squash(text)
    assert all(c.strip() for c in chunks)
    for chunk in chunks:
        if len(split_sentences(chunk)) > 1:
            assert len(chunk) <= 60


def test_default_limit_is_300() -> None:
    text = "这是一个句子。" * 100
    chunks = chunk_text(text)
    assert len(chunks) > 1
    assert all(len(c) <= 300 for c in chunks)


def test_split_into_chunks_numbers_in_order() -> None:
    chunks = split_into_chunks("One. Two. Three.", limit=5)
    assert [c.sequence_index for c in chunks] == [0, 1, 2]
    assert [c.text for c in chunks] == ["One.", "Two.", "Three."]


def test_invalid_limit_rejected() -> None:
    with pytest.raises(ValueError):
        chunk_text("Hello.", limit=0)
