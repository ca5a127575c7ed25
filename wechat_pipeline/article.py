from __future__ import annotations

import re
from typing import Optional, Tuple

from bs4 import BeautifulSoup, Doctype, Tag

from .config import PLACEHOLDER_ARTICLE, LogFn
from .io import load_prompt, normalize_text

# Document-level tags a model sometimes wraps the article in.
NON_CONTENT_TAGS = ["head", "title", "meta", "script", "style"]

BLOCK_TAGS = [
    "p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote",
    "figure", "figcaption", "section", "div", "br",
]


def strip_code_fences(text: str) -> str:
    """Remove a Markdown code fence wrapped around generated HTML."""
    text = text.strip()
    text = re.sub(r"^```(?:html)?\s*", "", text)
    text = re.sub(r"\s*```$", "", text)
    return text.strip()


def build_article_prompt(topic: str, title_rules: str, article_rules: str) -> str:
    template = load_prompt("article.txt")
    return (
        template.replace("{topic}", topic)
        .replace("{title_rules}", title_rules.replace("{topic}", topic))
        .replace("{article_rules}", article_rules)
    )


def draft_article(
    client,
    topic: str,
    title_rules: str,
    article_rules: str,
    log: Optional[LogFn] = print,
) -> str:
    """Ask the text back end for an article; fall back to a placeholder page."""
    try:
        prompt = build_article_prompt(topic, title_rules, article_rules)
        text = strip_code_fences(client.generate_text(prompt))
    except Exception as e:
        if log:
            log(f"    ❌ Article generation error: {e}")
        return PLACEHOLDER_ARTICLE

    if not text:
        if log:
            log("    ❌ Empty response from article writer")
        return PLACEHOLDER_ARTICLE
    return text


def _drop_non_content(soup: BeautifulSoup) -> None:
    for tag in soup.find_all(NON_CONTENT_TAGS):
        if not tag.decomposed:
            tag.decompose()


def _article_root(soup: BeautifulSoup) -> Tag:
    """Drop a document wrapper and return the node holding the article."""
    for node in list(soup.contents):
        if isinstance(node, Doctype):
            node.extract()
    _drop_non_content(soup)
    if soup.body:
        return soup.body
    if soup.html:
        return soup.html
    return soup


def _inner_html(root: Tag) -> str:
    return "".join(str(item) for item in root.contents).strip()


def split_title(html_content: str) -> Tuple[str, str]:
    """Pull the first <h1> out of the article and return (title, body).

    A full document (doctype, <html>, <head>, <body>) is reduced to the
    contents of its body.
    """
    soup = BeautifulSoup(html_content, "html.parser")
    root = _article_root(soup)
    heading = root.find("h1")
    if heading is None:
        return "", _inner_html(root)
    title = normalize_text(heading.get_text(" ", strip=True))
    heading.decompose()
    return title, _inner_html(root)


def html_to_text(html_content: str) -> str:
    """Plain-text projection with one line per block element."""
    soup = BeautifulSoup(html_content, "html.parser")
    _drop_non_content(soup)
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_after("\n")
    lines = (line.strip() for line in soup.get_text().splitlines())
    return "\n".join(line for line in lines if line)
