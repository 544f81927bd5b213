from __future__ import annotations

from distforge.linker.scanner import inlined_block, scan_specifiers


def test_scan_specifiers_reports_kinds_lines_and_offsets() -> None:
    content = (
        'import a from "pkg-a";\n'
        'import "./side";\n'
        "export {\n"
        "  b,\n"
        '} from "~/libs/b";\n'
        'const c = await import("./lazy");\n'
    )

    matches = scan_specifiers(content)

    assert [(m.specifier, m.kind, m.line) for m in matches] == [
        ("pkg-a", "from", 1),
        ("./side", "side-effect", 2),
        ("~/libs/b", "from", 5),
        ("./lazy", "call", 6),
    ]
    for match in matches:
        assert content[match.start : match.end] == match.specifier

    multiline = matches[2]
    assert content[multiline.statement_start : multiline.statement_end] == (
        'export {\n  b,\n} from "~/libs/b";'
    )


def test_scan_specifiers_skips_comments_and_inlined_regions() -> None:
    content = (
        '// import x from "commented";\n'
        " * see import('doc')\n"
        + inlined_block("~/libs/b", 'import inner from "hidden";\nexport const y = 1;')
        + '\nimport z from "visible";\n'
    )

    assert [m.specifier for m in scan_specifiers(content)] == ["visible"]


def test_inlined_block_wraps_contents() -> None:
    assert inlined_block("~/x", "code;\n\n") == "/* inlined-start ~/x */\ncode;\n/* inlined-end */"
