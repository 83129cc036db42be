# File: tests/test_preview_builder.py

from core.preview_builder import MISSING_INDEX_DOCUMENT, build_preview_document
from core.state_models import FileEntry


def test_missing_index_placeholder():
    assert build_preview_document([FileEntry("about.html", "<p>About</p>")]) == MISSING_INDEX_DOCUMENT


def test_inlines_module_script_and_stylesheet():
    files = [
        FileEntry("index.html",
                  '<html><head><link rel="stylesheet" href="./style.css"></head>'
                  '<body><script type="module" src="/app.js"></script></body></html>'),
        FileEntry("style.css", "h1 { color: red; }"),
        FileEntry("app.js", "console.log('hi');"),
    ]
    document = build_preview_document(files)

    assert "<style>h1 { color: red; }</style>" in document
    assert "<script type=\"module\">console.log('hi');</script>" in document
    assert 'src="/app.js"' not in document


def test_unknown_references_are_left_alone():
    index = '<link rel="stylesheet" href="https://cdn.example.com/lib.css">'
    assert build_preview_document([FileEntry("index.html", index)]) == index
