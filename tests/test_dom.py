# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for adlens.dom: layout reads, text, controls, patch log."""

from __future__ import annotations

from _html_fixtures import card_html, cards_by_class, fragment, make_document

from adlens.dom import (
    CONTROL_CLASS,
    HIDDEN_CLASS,
    DomPatch,
    build_controls,
    find_control_button,
    inside_control,
    is_hidden,
    measure,
    natural_size,
    owned_controls,
    parse_document,
    visible_text,
)


def _controls(card_id: str = "c1", *, topic_match: bool = False):
    return build_controls(
        card_id,
        topic_match=topic_match,
        label_download="Baixar",
        label_save="Salvar Oferta",
        label_select="Sel.",
        label_badge="WhatsApp",
    )


class TestLayout:
    def test_measure_from_snapshot_attributes(self):
        el = fragment('<div data-adlens-w="320" data-adlens-h="480" style="width:10px;height:10px"></div>')
        assert measure(el) == (320.0, 480.0)

    def test_measure_from_inline_style(self):
        assert measure(fragment('<div style="width: 600px; height:500.5px"></div>')) == (600.0, 500.5)

    def test_measure_ignores_max_width(self):
        assert measure(fragment('<div style="max-width:900px;height:10px"></div>')) == (0.0, 10.0)

    def test_unmeasurable_is_zero(self):
        assert measure(fragment("<div></div>")) == (0.0, 0.0)

    def test_natural_size(self):
        assert natural_size(fragment('<img width="400" height="300">')) == (400.0, 300.0)
        assert natural_size(fragment('<img data-adlens-nw="1080" data-adlens-nh="1080" width="5">')) == (1080.0, 1080.0)


class TestVisibleText:
    def test_skips_script_and_style(self):
        el = fragment("<div>Olá <script>var x=1;</script><style>p{}</style>mundo</div>")
        assert visible_text(el) == "Olá mundo"

    def test_skips_injected_controls(self):
        el = fragment("<div><p>Curso</p></div>")
        el.append(_controls())
        assert visible_text(el) == "Curso"

    def test_keeps_tail_order(self):
        assert visible_text(fragment("<div>a<b>b</b>c<i>d</i>e</div>")) == "abcde"


class TestControls:
    def test_build_controls_markup(self):
        controls = _controls("c7", topic_match=True)
        assert CONTROL_CLASS in controls.get("class")
        actions = [el.get("data-action") for el in controls.iterdescendants() if el.get("data-action")]
        assert actions == ["download", "save", "select"]
        assert all(
            el.get("data-card-id") == "c7" for el in controls.iterdescendants() if el.get("data-action")
        )
        assert "WhatsApp" in controls.text_content()

    def test_no_badge_without_topic_match(self):
        assert "WhatsApp" not in _controls(topic_match=False).text_content()

    def test_card_id_is_escaped(self):
        controls = _controls('x" onclick="evil')
        button = next(controls.iterdescendants("button"))
        assert button.get("data-card-id") == 'x" onclick="evil'
        assert button.get("onclick") is None

    def test_inside_control(self):
        controls = _controls()
        button = next(controls.iterdescendants("button"))
        assert inside_control(button)
        assert not inside_control(fragment("<span>x</span>"))

    def test_owned_controls_excludes_nested_cards(self):
        outer = fragment('<div data-adlens-processed="true"><div data-adlens-processed="true"></div></div>')
        inner = outer[0]
        inner.append(_controls("inner"))
        outer.append(_controls("outer"))
        assert [c.get("class") for c in owned_controls(outer)] == [CONTROL_CLASS]
        assert find_control_button(outer, "download").get("data-card-id") == "outer"
        assert find_control_button(inner, "save").get("data-card-id") == "inner"


class TestPatchLog:
    def test_records_ref(self):
        doc = parse_document('<html><body><div data-adlens-ref="12">x</div></body></html>')
        el = doc.root.body[0]
        doc.stamp(el, {"data-adlens-processed": "true"})
        doc.add_class(el, "adlens-topic-highlight")
        patches = doc.drain_patches()
        assert [p.op for p in patches] == ["stamp", "add_class"]
        assert patches[0].to_wire() == {"op": "stamp", "ref": 12, "attrs": {"data-adlens-processed": "true"}}
        assert doc.patches == ()

    def test_offline_ref_is_none(self):
        assert DomPatch(op="remove", ref=None).to_wire() == {"op": "remove", "ref": None}

    def test_add_class_is_idempotent_on_tree(self):
        doc = make_document(card_html())
        el = cards_by_class(doc)[0]
        doc.add_class(el, "x")
        doc.add_class(el, "x")
        assert el.get("class").split().count("x") == 1

    def test_set_visible_toggles_class(self):
        doc = make_document(card_html())
        el = cards_by_class(doc)[0]
        doc.set_visible(el, False)
        assert is_hidden(el)
        doc.set_visible(el, True)
        assert not is_hidden(el)
        assert el.get("class") == "ad-card"
        assert [p.data["visible"] for p in doc.patches] == [False, True]

    def test_set_visible_drops_empty_class(self):
        doc = parse_document(f'<html><body><div class="{HIDDEN_CLASS}">x</div></body></html>')
        el = doc.root.body[0]
        doc.set_visible(el, True)
        assert el.get("class") is None

    def test_remove_keeps_tail(self):
        doc = parse_document("<html><body><div>a<span>dup</span>tail</div></body></html>")
        div = doc.root.body[0]
        doc.remove(div[0])
        assert div.text_content() == "atail"
        assert doc.patches[0].op == "remove"

    def test_inject_records_markup(self):
        doc = make_document(card_html())
        el = cards_by_class(doc)[0]
        doc.inject(el, _controls("c1"))
        patch = doc.patches[-1]
        assert patch.op == "inject"
        assert CONTROL_CLASS in patch.data["html"]
        assert len(owned_controls(el)) == 1

    def test_busy_and_checked_carry_card_address(self):
        doc = make_document(card_html())
        el = cards_by_class(doc)[0]
        doc.inject(el, _controls("c3"))
        button = find_control_button(el, "download")
        checkbox = find_control_button(el, "select")
        doc.drain_patches()

        doc.set_busy(button, True)
        assert button.get("disabled") == "disabled"
        doc.set_busy(button, False)
        assert button.get("disabled") is None
        doc.set_checked(checkbox, True)
        assert checkbox.get("checked") == "checked"

        busy, idle, checked = doc.drain_patches()
        assert busy.data == {"busy": True, "card_id": "c3", "action": "download"}
        assert idle.data["busy"] is False
        assert checked.data == {"checked": True, "card_id": "c3", "action": "select"}


class TestDocument:
    def test_lang_and_url(self):
        doc = make_document(card_html(), url="https://x.test/", lang="en")
        assert doc.lang == "en"
        assert doc.url == "https://x.test/"
