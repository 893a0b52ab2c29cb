# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Internationalization: marker vocabularies + locale-specific UI strings.

2-Layer architecture:
  Layer 1 (Detection): universal label tuples, all locales merged, matched
      against trimmed, lowercased element text. New locales are additive:
      append the label here, no detector change needed.
  Layer 2 (Rendering): LocaleConfig dataclass: control labels and
      notification messages shown to the user.

Supported locales: pt (default, pt-BR), en
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Layer 1: Universal Detection Terms (lowercase literals, exact match)
# ---------------------------------------------------------------------------

DETAIL_LABELS: tuple[str, ...] = (
    # pt
    "ver detalhes do anúncio",
    # en
    "see ad details",
)

SUMMARY_LABELS: tuple[str, ...] = (
    # pt
    "ver resumo",
    # en
    "see summary",
)

SPONSORED_LABELS: tuple[str, ...] = (
    # pt
    "patrocinado",
    # en
    "sponsored",
)

COPY_LINK_LABELS: tuple[str, ...] = (
    # pt
    "copiar link",
    "copiar link do anúncio",
    # en
    "copy link",
    "copy ad link",
)

# Regex fragments (not literals): the label preceding the ad library id.
LIBRARY_ID_LABEL_PATTERNS: tuple[str, ...] = (
    # pt
    r"Identifica[çc][ãa]o\s*da\s*biblioteca",
    # en
    r"Library\s*ID",
)

# "<n> ads use this creative"; group 1 is the count.
ACTIVE_COUNT_PATTERNS: tuple[str, ...] = (
    # pt
    r"(\d+)\s*anúncios?\s*usam",
    # en
    r"(\d+)\s*ads?\s*use",
)


@dataclass(frozen=True, slots=True)
class MarkerVocabulary:
    """Marker label sets for the two detection passes."""

    primary: frozenset[str]  # detail / summary links
    sponsored: frozenset[str]

    @property
    def passes(self) -> tuple[frozenset[str], ...]:
        return (self.primary, self.sponsored)


MARKERS = MarkerVocabulary(
    primary=frozenset(DETAIL_LABELS + SUMMARY_LABELS),
    sponsored=frozenset(SPONSORED_LABELS),
)


def normalize_label(text: str) -> str:
    """Collapse whitespace, trim and lowercase for exact label comparison."""
    return " ".join(text.split()).lower()


# ---------------------------------------------------------------------------
# Layer 2: LocaleConfig (rendering)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LocaleConfig:
    """Locale-specific control labels and notification messages."""

    code: str
    label_download: str
    label_save: str
    label_select: str
    label_topic_badge: str
    msg_login_required: str
    msg_offer_name_required: str
    msg_offer_saved: str
    msg_save_failed: str
    msg_connection_error: str
    msg_media_not_found: str
    msg_download_failed: str  # "{error}", use .format(error=...)
    downloaded_template: str  # "{n} file(s)", use .format(n=...)
    msg_logged_in: str
    msg_logged_out: str
    showing_template: str  # use .format(shown=..., available=...)
    showing_all_template: str  # use .format(shown=...)


_LOCALES: dict[str, LocaleConfig] = {
    "pt": LocaleConfig(
        code="pt",
        label_download="Baixar",
        label_save="Salvar Oferta",
        label_select="Sel.",
        label_topic_badge="WhatsApp",
        msg_login_required="Faça login na extensão primeiro!",
        msg_offer_name_required="Digite o nome da oferta",
        msg_offer_saved="Oferta salva com sucesso!",
        msg_save_failed="Erro ao salvar",
        msg_connection_error="Erro de conexão",
        msg_media_not_found="Mídia não encontrada",
        msg_download_failed="Erro: {error}",
        downloaded_template="{n} arquivo(s) baixado(s)!",
        msg_logged_in="Login realizado!",
        msg_logged_out="Logout realizado",
        showing_template="Mostrando {shown} de {available} anúncios",
        showing_all_template="Mostrando todos os {shown} anúncios",
    ),
    "en": LocaleConfig(
        code="en",
        label_download="Download",
        label_save="Save Offer",
        label_select="Sel.",
        label_topic_badge="WhatsApp",
        msg_login_required="Log in to the extension first!",
        msg_offer_name_required="Enter the offer name",
        msg_offer_saved="Offer saved!",
        msg_save_failed="Could not save",
        msg_connection_error="Connection error",
        msg_media_not_found="Media not found",
        msg_download_failed="Error: {error}",
        downloaded_template="{n} file(s) downloaded!",
        msg_logged_in="Logged in!",
        msg_logged_out="Logged out",
        showing_template="Showing {shown} of {available} ads",
        showing_all_template="Showing all {shown} ads",
    ),
}

DEFAULT_LOCALE = "pt"


def get_locale(code: str | None = None) -> LocaleConfig:
    """Return LocaleConfig for *code*; ``None`` falls back to DEFAULT_LOCALE."""
    return _LOCALES.get(code or DEFAULT_LOCALE, _LOCALES[DEFAULT_LOCALE])


def locale_from_lang(lang: str | None) -> str:
    """Map an ``<html lang>`` value ("pt-BR", "en_US") to a supported locale code."""
    if not lang:
        return DEFAULT_LOCALE
    base = lang.replace("_", "-").split("-")[0].strip().lower()
    return base if base in _LOCALES else DEFAULT_LOCALE
