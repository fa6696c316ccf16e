"""
Best-effort LaTeX comment stripping.
"""


def strip_latex_comments(src: str) -> str:
    """
    Remove `%` comments line by line, keeping escaped `\\%`.

    Verbatim-like environments are not special-cased.
    """
    out_lines = []
    for line in src.split("\n"):
        out = []
        escaped = False
        for ch in line:
            if escaped:
                out.append(ch)
                escaped = False
                continue
            if ch == "\\":
                out.append(ch)
                escaped = True
                continue
            if ch == "%":
                break
            out.append(ch)
        out_lines.append("".join(out))
    return "\n".join(out_lines)
