"""
Reduce grant announcements to plain text, removing navigation/footer markup.
"""

import re

from bs4 import BeautifulSoup

from grant_engine.core.utils import clean_text


_HTML_HINT = re.compile(r"<\s*(html|body|div|p|li|ul|ol|h[1-6]|table|br|span|section|article)\b", re.IGNORECASE)


def looks_like_html(text: str) -> bool:
    return bool(text) and bool(_HTML_HINT.search(text))


class AnnouncementTextCleaner:
    """Extract readable announcement text from HTML or plain text."""

    # Elements to remove (navigation, ads, etc.)
    REMOVE_SELECTORS = [
        'nav',
        'header',
        'footer',
        'aside',
        '.sidebar',
        '.navigation',
        '.menu',
        '.breadcrumb',
        '.social-share',
        '#cookie-banner',
        'script',
        'style',
        'noscript'
    ]

    # Elements that typically contain main content
    CONTENT_SELECTORS = [
        'main',
        'article',
        '[role="main"]',
        '#main-content',
        '#content',
        '.content',
    ]

    BLOCK_TAGS = ['h1', 'h2', 'h3', 'h4', 'p', 'li', 'td', 'dd', 'dt']

    def clean(self, text: str) -> str:
        """
        Return plain text. HTML input is parsed; plain text is returned
        unchanged apart from surrounding whitespace, so excerpts stay
        verbatim spans of the caller's input.
        """
        if not looks_like_html(text):
            return text.strip()

        soup = BeautifulSoup(text, 'html.parser')

        for selector in self.REMOVE_SELECTORS:
            for element in soup.select(selector):
                element.decompose()

        main_content = None
        for selector in self.CONTENT_SELECTORS:
            elements = soup.select(selector)
            if elements:
                main_content = elements[0]
                break

        if not main_content:
            main_content = soup.body or soup

        lines = []
        for elem in main_content.find_all(self.BLOCK_TAGS):
            # Nested blocks (p inside li) would otherwise be emitted twice
            if elem.find_parent(self.BLOCK_TAGS):
                continue
            line = elem.get_text(" ", strip=True)
            if line:
                lines.append(line)

        if not lines:
            lines = [main_content.get_text(" ", strip=True)]

        return clean_text("\n".join(lines))
