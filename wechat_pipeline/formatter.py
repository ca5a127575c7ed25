from __future__ import annotations

from typing import List, Mapping, Optional

from bs4 import BeautifulSoup, Tag

from .config import (
    BOX_SIZING_RESET,
    CONTAINER_MARKER,
    CONTAINER_STYLE,
    CONTAINER_TAG,
    WECHAT_TAG_STYLES,
)

# Tags the WeChat editor drops or mangles, mapped to the tag that replaces them.
FLATTEN_TAGS: Mapping[str, str] = {"figure": "p", "figcaption": "span"}

SIZING_ATTRIBUTES = ("width", "height")
STRIPPED_ATTRIBUTES = ("class",)


def merge_styles(specific: str, reset: str = BOX_SIZING_RESET) -> str:
    """Append the reset declarations that ``specific`` does not already set."""
    specific = specific.strip()
    if specific and not specific.endswith(";"):
        specific += ";"
    declared = {
        decl.split(":", 1)[0].strip().lower()
        for decl in specific.split(";")
        if ":" in decl
    }
    extra = [
        decl.strip() + ";"
        for decl in reset.split(";")
        if ":" in decl and decl.split(":", 1)[0].strip().lower() not in declared
    ]
    return " ".join(part for part in [specific, *extra] if part)


class WeChatFormatter:
    """Rewrites generated HTML into the inline-styled subset WeChat keeps.

    Every element's style is replaced from a tag-keyed table, with the
    box-sizing reset merged in after the tag rule. Image wrappers are renamed
    to paragraphs on the tree once the walk is done, and the whole document is
    wrapped in a single styled container. Renaming is one-way: a second pass
    styles a former ``figure`` as a paragraph.
    """

    def __init__(
        self,
        tag_styles: Mapping[str, str] = WECHAT_TAG_STYLES,
        container_style: str = CONTAINER_STYLE,
        marker: str = CONTAINER_MARKER,
    ) -> None:
        self.tag_styles = tag_styles
        self.container_style = container_style
        self.marker = marker

    def style_for(self, tag_name: str) -> str:
        return merge_styles(self.tag_styles.get(tag_name, ""))

    def normalize(self, html_content: str) -> str:
        soup = BeautifulSoup(html_content, "html.parser")
        self._unwrap_container(soup)

        for tag in soup.find_all(True):
            self._apply_style(tag)

        for tag in soup.find_all(list(FLATTEN_TAGS)):
            tag.name = FLATTEN_TAGS[tag.name]

        return self._wrap(soup)

    def _apply_style(self, tag: Tag) -> None:
        for attr in STRIPPED_ATTRIBUTES:
            tag.attrs.pop(attr, None)
        if tag.name == "img":
            for attr in SIZING_ATTRIBUTES:
                tag.attrs.pop(attr, None)
        tag["style"] = self.style_for(tag.name)

    def _is_container(self, node: object) -> bool:
        return (
            isinstance(node, Tag)
            and node.name == CONTAINER_TAG
            and node.get("data-tool") == self.marker
        )

    def _unwrap_container(self, soup: BeautifulSoup) -> None:
        roots = _root_elements(soup)
        if len(roots) == 1 and self._is_container(roots[0]):
            roots[0].unwrap()

    def _wrap(self, soup: BeautifulSoup) -> str:
        container = soup.new_tag(CONTAINER_TAG)
        container["style"] = self.container_style
        container["data-tool"] = self.marker
        for node in list(soup.contents):
            container.append(node.extract())
        soup.append(container)
        return str(soup)


def _root_elements(soup: BeautifulSoup) -> List[Tag]:
    return [
        node for node in soup.contents
        if isinstance(node, Tag) or (isinstance(node, str) and node.strip())
    ]


_default_formatter: Optional[WeChatFormatter] = None


def normalize(html_content: str) -> str:
    """Normalize with the default style table."""
    global _default_formatter
    if _default_formatter is None:
        _default_formatter = WeChatFormatter()
    return _default_formatter.normalize(html_content)
