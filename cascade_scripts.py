"""Scripts run inside Antigravity windows via Runtime.evaluate.

All DOM knowledge about the cascade (agent chat) panel lives here:
locating it across execution contexts, reading its title, copying its
styles and markup, typing into its input and clicking its header buttons.

Every public function takes a CdpSession and returns a plain result value.
Stale contexts, a missing panel or a missing button are normal while
windows come and go, so none of them raise:

    extract_metadata(session) -> Metadata | None
    capture_styles(session)   -> str ('' when unavailable)
    capture_content(session)  -> Snapshot | None
    inject_message(session, text)  -> ActionResult
    perform_action(session, name)  -> ActionResult

Heuristics (title selectors, submit buttons, header buttons) are ordered
lists tried one remote evaluation at a time, so each tier can be faked on
its own in tests.
"""
import json
import re
import time
from dataclasses import dataclass, field

from cdp_session import CdpError, ts_print

print = ts_print

DEFAULT_TITLE = 'Agent'
TITLE_SELECTORS = ['h1', 'h2', 'header', '[class*="title"]']
SUBMIT_SELECTORS = [
    'button[class*="arrow"]',
    'button[aria-label*="Send"]',
    'button[type="submit"]',
]


# ── Result types ─────────────────────────────────────────────────────────────

@dataclass
class Metadata:
    chat_title: str
    active: bool
    context_id: int


@dataclass
class Snapshot:
    html: str
    body_bg: str = ''
    body_color: str = ''

    def to_json(self):
        return {'html': self.html, 'bodyBg': self.body_bg, 'bodyColor': self.body_color}


@dataclass
class ActionResult:
    ok: bool
    message: str = ''
    reason: str = ''

    @classmethod
    def success(cls, message=''):
        return cls(True, message=message)

    @classmethod
    def failure(cls, reason):
        return cls(False, reason=reason)

    @classmethod
    def from_value(cls, value, default_reason='No result'):
        """Validate a {ok, message|reason} object returned by a page script."""
        if not isinstance(value, dict):
            return cls.failure(default_reason)
        if value.get('ok') is True:
            return cls.success(str(value.get('message') or ''))
        return cls.failure(str(value.get('reason') or default_reason))

    def to_json(self):
        if self.ok:
            return {'ok': True, 'message': self.message}
        return {'ok': False, 'reason': self.reason}


# ── Page scripts ─────────────────────────────────────────────────────────────
#
# *_FN are function sources applied to JSON arguments by _apply(); *_JS are
# complete expressions.

METADATA_FN = r"""
function(titleSelectors) {
    const cascade = document.getElementById('cascade');
    if (!cascade) return { found: false };
    const titles = titleSelectors.map(sel => {
        try {
            const el = document.querySelector(sel);
            return el ? el.textContent : null;
        } catch (e) { return null; }
    });
    return { found: true, titles: titles, active: document.hasFocus() };
}
"""

STYLES_JS = r"""
(() => {
    const rules = [];
    for (const sheet of document.styleSheets) {
        try {
            for (const rule of sheet.cssRules) rules.push(rule.cssText);
        } catch (e) { }
    }
    return { rules: rules };
})()
"""

CONTENT_JS = r"""
(() => {
    const cascade = document.getElementById('cascade');
    if (!cascade) return { error: 'cascade not found' };
    const clone = cascade.cloneNode(true);
    const editable = clone.querySelector('[contenteditable="true"]');
    const input = editable && editable.closest('div[id^="cascade"] > div');
    if (input) input.remove();
    const bodyStyles = window.getComputedStyle(document.body);
    return {
        html: clone.outerHTML,
        bodyBg: bodyStyles.backgroundColor,
        bodyColor: bodyStyles.color
    };
})()
"""

FILL_FN = r"""
function(text) {
    const editor = document.querySelector('[contenteditable="true"]') || document.querySelector('textarea');
    if (!editor) return { ok: false, reason: 'no editor found' };
    editor.focus();
    if (editor.tagName === 'TEXTAREA') {
        // React ignores plain .value assignment; go through the native setter.
        const setter = Object.getOwnPropertyDescriptor(window.HTMLTextAreaElement.prototype, 'value').set;
        setter.call(editor, text);
        editor.dispatchEvent(new Event('input', { bubbles: true }));
    } else {
        document.execCommand('selectAll', false, null);
        document.execCommand('insertText', false, text);
    }
    return { ok: true, message: editor.tagName.toLowerCase() };
}
"""

CLICK_FN = r"""
function(selector) {
    try {
        const el = document.querySelector(selector);
        if (!el) return false;
        el.click();
        return true;
    } catch (e) { return false; }
}
"""

ENTER_JS = r"""
(() => {
    const editor = document.querySelector('[contenteditable="true"]') || document.querySelector('textarea');
    if (!editor) return false;
    editor.dispatchEvent(new KeyboardEvent('keydown', { bubbles: true, key: 'Enter' }));
    return true;
})()
"""

_HEADER_BUTTONS = "'header button, [class*=\"titlebar\"] button, [class*=\"header\"] button'"

NEW_FALLBACK_JS = r"""
(() => {
    for (const btn of document.querySelectorAll(%s)) {
        const svg = btn.querySelector('svg');
        if (!svg) continue;
        for (const p of svg.querySelectorAll('path')) {
            const d = p.getAttribute('d') || '';
            if (d.includes('M12') && (d.includes('v14') || d.includes('V19'))) {
                btn.click();
                return { ok: true, message: 'Clicked new (svg fallback)' };
            }
        }
    }
    return { ok: false, reason: 'New button not found' };
})()
""" % _HEADER_BUTTONS

HISTORY_FALLBACK_JS = r"""
(() => {
    for (const btn of document.querySelectorAll(%s)) {
        const svg = btn.querySelector('svg');
        if (svg && svg.innerHTML.includes('circle')) {
            btn.click();
            return { ok: true, message: 'Clicked history (svg fallback)' };
        }
    }
    return { ok: false, reason: 'History button not found' };
})()
""" % _HEADER_BUTTONS

CLOSE_FALLBACK_JS = r"""
(() => {
    const buttons = Array.from(document.querySelectorAll(%s));
    const last = buttons[buttons.length - 1];
    if (!last) return { ok: false, reason: 'Close button not found' };
    last.click();
    return { ok: true, message: 'Clicked close (fallback)' };
})()
""" % _HEADER_BUTTONS


@dataclass
class UiAction:
    """A header button: selectors tried in order, then a structural fallback."""
    name: str
    selectors: list = field(default_factory=list)
    fallback_js: str = ''


ACTIONS = {
    'new': UiAction('new', [
        'button[aria-label*="New"]',
        'button[aria-label*="new"]',
        'button[title*="New"]',
        '[data-testid*="new"]',
    ], NEW_FALLBACK_JS),
    'history': UiAction('history', [
        'button[aria-label*="History"]',
        'button[aria-label*="history"]',
        'button[aria-label*="Previous"]',
        'button[title*="History"]',
        '[data-testid*="history"]',
    ], HISTORY_FALLBACK_JS),
    'close': UiAction('close', [
        'button[aria-label*="Close"]',
        'button[aria-label*="close"]',
        'button[title*="Close"]',
        '[data-testid*="close"]',
    ], CLOSE_FALLBACK_JS),
}


def _apply(fn_source, *args):
    """Build an expression calling fn_source with JSON-encoded arguments."""
    return f"({fn_source.strip()})({', '.join(json.dumps(a) for a in args)})"


def metadata_js():
    return _apply(METADATA_FN, TITLE_SELECTORS)


def fill_js(text):
    return _apply(FILL_FN, text)


def click_js(selector):
    return _apply(CLICK_FN, selector)


# ── Evaluation ───────────────────────────────────────────────────────────────

class ScriptError(CdpError):
    """The expression threw inside the page."""


def evaluate(session, expression, context_id=None):
    """Evaluate in one context (the page's default one when None) and return the JSON value."""
    params = {'expression': expression, 'returnByValue': True}
    if context_id is not None:
        params['contextId'] = context_id
    res = session.call('Runtime.evaluate', params)
    if not isinstance(res, dict):
        raise ScriptError(f"malformed response: {res!r:.80}")
    details = res.get('exceptionDetails')
    if details:
        text = details.get('text') if isinstance(details, dict) else details
        raise ScriptError(str(text or 'script threw'))
    result = res.get('result') or {}
    if not isinstance(result, dict):
        raise ScriptError(f"malformed result: {result!r:.80}")
    return result.get('value')


def pick_title(texts):
    """First candidate text of 3-49 characters, trimmed; DEFAULT_TITLE if none fits."""
    for text in texts or []:
        # Length in UTF-16 units, as the page measures it.
        if isinstance(text, str) and 2 < len(text.encode('utf-16-le')) // 2 < 50:
            return text.strip()
    return DEFAULT_TITLE


_SCOPE_RE = re.compile(r'(^|[\s,}])(body|html)(?=[\s,{])', re.IGNORECASE)


def scope_css(rule):
    """Point body/html selectors at #cascade so page backgrounds stay inside the mirror."""
    return _SCOPE_RE.sub(r'\1#cascade', rule)


def _decode_metadata(value, context_id):
    if not isinstance(value, dict) or value.get('found') is not True:
        return None
    return Metadata(
        chat_title=pick_title(value.get('titles')),
        active=bool(value.get('active')),
        context_id=context_id,
    )


# ── Public API ───────────────────────────────────────────────────────────────

def extract_metadata(session):
    """Find the context hosting #cascade and read its title and focus state.

    The preferred context is tried first. If it no longer evaluates it is
    forgotten, and every known context is tried in creation order.
    """
    expression = metadata_js()
    cid = session.root_context_id
    if cid is not None:
        try:
            meta = _decode_metadata(evaluate(session, expression, cid), cid)
            if meta:
                return meta
        except CdpError:
            session.root_context_id = None

    for cid in session.contexts:
        try:
            meta = _decode_metadata(evaluate(session, expression, cid), cid)
        except CdpError:
            continue
        if meta:
            return meta
    return None


def capture_styles(session):
    """All readable stylesheet rules of the window, scoped to #cascade."""
    cid = session.root_context_id
    if cid is None:
        return ''
    try:
        value = evaluate(session, STYLES_JS, cid)
    except CdpError as e:
        print(f"[cdp] Style capture failed: {e}")
        return ''
    if not isinstance(value, dict) or not isinstance(value.get('rules'), list):
        return ''
    return ''.join(scope_css(rule) + '\n' for rule in value['rules'] if isinstance(rule, str))


def capture_content(session):
    """Read-only copy of the #cascade subtree (input box removed)."""
    cid = session.root_context_id
    if cid is None:
        return None
    try:
        value = evaluate(session, CONTENT_JS, cid)
    except CdpError:
        return None
    if not isinstance(value, dict) or not isinstance(value.get('html'), str):
        return None
    return Snapshot(
        html=value['html'],
        body_bg=str(value.get('bodyBg') or ''),
        body_color=str(value.get('bodyColor') or ''),
    )


def _click(session, selector, cid):
    return evaluate(session, click_js(selector), cid) is True


def inject_message(session, text, settle=0.1):
    """Type text into the cascade input and submit it.

    Fill the editor, give the UI a moment to pick the input up, then click
    the first submit button that exists, else press Enter in the editor.
    """
    cid = session.root_context_id
    try:
        filled = ActionResult.from_value(evaluate(session, fill_js(text), cid))
        if not filled.ok:
            return filled
        if settle:
            time.sleep(settle)
        for selector in SUBMIT_SELECTORS:
            if _click(session, selector, cid):
                return ActionResult.success(f'Clicked {selector}')
        if evaluate(session, ENTER_JS, cid) is True:
            return ActionResult.success('Pressed Enter')
        return ActionResult.failure('no submit control found')
    except CdpError as e:
        return ActionResult.failure(str(e))


def perform_action(session, name):
    """Click one of the cascade header buttons: 'new', 'history' or 'close'."""
    action = ACTIONS.get(name)
    if action is None:
        return ActionResult.failure(f'Unknown action: {name}')
    cid = session.root_context_id
    try:
        for selector in action.selectors:
            if _click(session, selector, cid):
                return ActionResult.success(f'Clicked {name}')
        return ActionResult.from_value(
            evaluate(session, action.fallback_js, cid),
            default_reason=f'{name.capitalize()} button not found',
        )
    except CdpError as e:
        return ActionResult.failure(str(e))
