import json
from typing import Optional, Union

from jinja2 import BaseLoader, Environment

from owlbridge.core.models import CompileResult
from owlbridge.cli.formatter import OutputFormatter

# Text the compiler emits right before the module's registration index.
MODULE_START = "const opal_code = function() {\n  global.Opal.modules["

HOT_RELOADER_TEMPLATE = """\
if (typeof module.hot !== 'undefined' && typeof module.hot.accept === 'function') {
    module.hot.accept(() => {
        if (typeof global.Opal !== 'undefined' && typeof Opal.require_table !== "undefined" && Opal.require_table['corelib/module']) {
            let already_loaded = false;
            if (typeof global.Opal.modules !== 'undefined') {
                if (typeof global.Opal.modules[{{ module_id }}] === 'function') {
                    already_loaded = true;
                }
            }
            opal_code();
            if (already_loaded) {
                try {
                    if (Opal.require_table[{{ module_id }}]) {
                        global.Opal.load.call(global.Opal, {{ module_id }});
                    } else {
                        global.Opal.require.call(global.Opal, {{ module_id }});
                    }
                    {{ hmr_hook }}
                } catch (err) {
                    console.error(err.message);
                }
            } else {
                var start = new Date();
                var fun = function() {
                    try {
                        if (Opal.require_table[{{ module_id }}]) {
                            global.Opal.load.call(global.Opal, {{ module_id }});
                        } else {
                            global.Opal.require.call(global.Opal, {{ module_id }});
                        }
                        console.log({{ module_id }} + ': loaded');
                        try {
                            {{ hmr_hook }}
                        } catch (err) {
                            console.error(err.message);
                        }
                    } catch (err) {
                        if ((new Date() - start) > {{ load_timeout_ms }}) {
                            console.error(err.message);
                            console.log({{ module_id }} + ': load timed out');
                        } else {
                            console.log({{ module_id }} + ': deferring load');
                            setTimeout(fun, {{ load_retry_ms }});
                        }
                    }
                }
                fun();
            }
        }
    });
}
module.exports = opal_code;
"""

LOAD_RETRY_MS = 100
LOAD_TIMEOUT_MS = 5000

_environment = Environment(loader=BaseLoader(), keep_trailing_newline=True)
_template = _environment.from_string(HOT_RELOADER_TEMPLATE)


def extract_module_id(javascript: str) -> Optional[str]:
    """
    Return the module registration index the compiler wrote after MODULE_START.

    The token is returned verbatim (usually a quoted module name) so it can be
    pasted back into generated code without evaluation. None when the code
    carries no registration.
    """
    marker_index = javascript.find(MODULE_START)
    if marker_index == -1:
        return None

    start_index = marker_index + len(MODULE_START)
    end_index = javascript.find("]", start_index)
    if end_index == -1:
        return None

    return javascript[start_index:end_index]


def render_hot_reloader(module_id: str, hmr_hook: str = "") -> str:
    return _template.render(
        module_id=module_id,
        hmr_hook=hmr_hook,
        load_retry_ms=LOAD_RETRY_MS,
        load_timeout_ms=LOAD_TIMEOUT_MS,
    )


def resolve_module_token(result: Union[CompileResult, str]) -> str:
    """Pick the JS expression naming the compiled module."""
    if isinstance(result, CompileResult) and result.module_id is not None:
        # Structured identifiers are plain module names; quote them for JS.
        return json.dumps(result.module_id)

    javascript = (result.javascript or "") if isinstance(result, CompileResult) else result
    module_id = extract_module_id(javascript)
    if module_id is None:
        OutputFormatter.log("Compiled code has no Opal module registration; reloading it by a null module id.", severity="warning")
        return "null"
    return module_id


def wrap_with_hot_reloader(result: Union[CompileResult, str], hmr_hook: str = "") -> str:
    """Append the hot module reload bootstrap to compiled code."""
    javascript = (result.javascript or "") if isinstance(result, CompileResult) else result
    module_id = resolve_module_token(result)
    return "\n".join([javascript, render_hot_reloader(module_id, hmr_hook)])
