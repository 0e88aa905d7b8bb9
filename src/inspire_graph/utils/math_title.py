"""タイトル中のLaTeX/MathML表記をプレーンテキストに変換."""

import re

SUPERSCRIPTS = dict(
    zip(
        "0123456789+-=()abcdefghijklmnoprstuvwxyz",
        "⁰¹²³⁴⁵⁶⁷⁸⁹⁺⁻⁼⁽⁾ᵃᵇᶜᵈᵉᶠᵍʰⁱʲᵏˡᵐⁿᵒᵖʳˢᵗᵘᵛʷˣʸᶻ",
        strict=True,
    )
)
SUBSCRIPTS = dict(
    zip(
        "0123456789+-=()aehijklmnoprstuvx",
        "₀₁₂₃₄₅₆₇₈₉₊₋₌₍₎ₐₑₕᵢⱼₖₗₘₙₒₚᵣₛₜᵤᵥₓ",
        strict=True,
    )
)
SYMBOLS = {
    "alpha": "α",
    "beta": "β",
    "gamma": "γ",
    "Gamma": "Γ",
    "delta": "δ",
    "Delta": "Δ",
    "epsilon": "ε",
    "varepsilon": "ε",
    "zeta": "ζ",
    "eta": "η",
    "theta": "θ",
    "Theta": "Θ",
    "iota": "ι",
    "kappa": "κ",
    "lambda": "λ",
    "Lambda": "Λ",
    "mu": "μ",
    "nu": "ν",
    "xi": "ξ",
    "Xi": "Ξ",
    "pi": "π",
    "Pi": "Π",
    "rho": "ρ",
    "sigma": "σ",
    "Sigma": "Σ",
    "tau": "τ",
    "upsilon": "υ",
    "Upsilon": "Υ",
    "phi": "φ",
    "varphi": "φ",
    "Phi": "Φ",
    "chi": "χ",
    "psi": "ψ",
    "Psi": "Ψ",
    "omega": "ω",
    "Omega": "Ω",
    "ell": "ℓ",
    "hbar": "ħ",
    "pm": "±",
    "mp": "∓",
    "to": "→",
    "rightarrow": "→",
    "leftarrow": "←",
    "leftrightarrow": "↔",
    "times": "×",
    "sim": "∼",
    "simeq": "≃",
    "approx": "≈",
    "le": "≤",
    "leq": "≤",
    "ge": "≥",
    "geq": "≥",
    "ne": "≠",
    "neq": "≠",
    "infty": "∞",
    "partial": "∂",
    "nabla": "∇",
    "sqrt": "√",
    "cdot": "·",
    "bar": "",
    "overline": "",
    "tilde": "",
    "hat": "",
    "vec": "",
}

_FONT_BRACED = re.compile(r"\\(?:text|mathrm|mathbf|mathit|bf|it|mathcal|cal|rm|sf|tt|boldsymbol)\{([^}]*)\}")
_FONT_DECLARATIVE = re.compile(r"\\(?:rm|bf|it|sf|tt|normalfont)(?![a-zA-Z])")
_SPACING = re.compile(
    r"\\[hv]space\s*\{[^}]*\}|\\m?kern\s*-?[\d.]+\s*(?:pt|em|ex|mu|mm|cm|in)?|\\[,;:!]"
)
_WIDE_SPACING = re.compile(r"\\(?:quad|qquad|enspace|thinspace)(?![a-zA-Z])")
_PRIMES = re.compile(r"\^\{?((?:\\prime)+)\}?")
_COMMAND = re.compile(r"\\([A-Za-z]+)")
_TAG = re.compile(r"<[^>]+>")


def _script(content: str, table: dict[str, str], marker: str) -> str:
    content = content.strip()
    if all(ch in table for ch in content):
        return "".join(table[ch] for ch in content)
    return f"{marker}{content}" if len(content) == 1 else f"{marker}({content})"


def clean_math_title(title: str | None) -> str:
    """タイトルのLaTeX/MathMLを読みやすいUnicodeテキストに変換.

    Args:
        title: 生のタイトル

    Returns:
        変換後のタイトル（Noneや空文字列なら空文字列）
    """
    if not title:
        return ""

    text = title
    if "<" in text:
        text = _TAG.sub("", text)

    text = _PRIMES.sub(lambda m: "'" * m.group(1).count("\\prime"), text)
    text = text.replace("\\prime", "'")
    text = _FONT_BRACED.sub(r"\1", text)
    text = _FONT_DECLARATIVE.sub("", text)
    text = _SPACING.sub("", text)
    text = _WIDE_SPACING.sub(" ", text)
    text = _COMMAND.sub(lambda m: SYMBOLS.get(m.group(1), m.group(0)), text)

    text = re.sub(r"\^\{([^}]*)\}", lambda m: _script(m.group(1), SUPERSCRIPTS, "^"), text)
    text = re.sub(r"\^(\S)", lambda m: _script(m.group(1), SUPERSCRIPTS, "^"), text)
    text = re.sub(r"_\{([^}]*)\}", lambda m: _script(m.group(1), SUBSCRIPTS, "_"), text)
    text = re.sub(r"_(\S)", lambda m: _script(m.group(1), SUBSCRIPTS, "_"), text)

    text = text.replace("$", "").replace("{", "").replace("}", "")
    return re.sub(r"\s+", " ", text).strip()
