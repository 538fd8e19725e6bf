"""Identifiers provided by the host environment rather than by packages.

Free references to these names are never treated as package globals.
"""

from __future__ import annotations

JS_BUILTINS = frozenset(
    {
        "AggregateError", "Array", "ArrayBuffer", "Atomics", "BigInt", "BigInt64Array",
        "BigUint64Array", "Boolean", "DataView", "Date", "Error", "EvalError",
        "FinalizationRegistry", "Float32Array", "Float64Array", "Function", "Infinity",
        "Int16Array", "Int32Array", "Int8Array", "Intl", "Iterator", "JSON", "Map", "Math",
        "NaN", "Number", "Object", "Promise", "Proxy", "RangeError", "ReferenceError",
        "Reflect", "RegExp", "Set", "SharedArrayBuffer", "String", "Symbol", "SyntaxError",
        "TypeError", "URIError", "Uint16Array", "Uint32Array", "Uint8Array",
        "Uint8ClampedArray", "WeakMap", "WeakRef", "WeakSet", "WebAssembly",
        "decodeURI", "decodeURIComponent", "encodeURI", "encodeURIComponent", "escape",
        "eval", "globalThis", "isFinite", "isNaN", "parseFloat", "parseInt", "undefined",
        "unescape", "arguments",
    }
)

NODE_GLOBALS = frozenset(
    {
        "AbortController", "AbortSignal", "Blob", "Buffer", "BroadcastChannel",
        "ByteLengthQueuingStrategy", "CompressionStream", "CountQueuingStrategy", "Crypto",
        "CryptoKey", "CustomEvent", "DOMException", "DecompressionStream", "Event",
        "EventTarget", "File", "FormData", "Headers", "MessageChannel", "MessageEvent",
        "MessagePort", "Navigator", "Performance", "ReadableStream", "Request", "Response",
        "SubtleCrypto", "TextDecoder", "TextDecoderStream", "TextEncoder",
        "TextEncoderStream", "TransformStream", "URL", "URLSearchParams", "WebSocket",
        "WritableStream", "__dirname", "__filename", "atob", "btoa", "clearImmediate",
        "clearInterval", "clearTimeout", "console", "crypto", "fetch", "performance",
        "process", "queueMicrotask", "setImmediate", "setInterval", "setTimeout",
        "structuredClone",
    }
)

BROWSER_GLOBALS = frozenset(
    {
        "window", "document", "navigator", "location", "history", "screen", "self",
        "parent", "top", "frames", "opener", "localStorage", "sessionStorage",
        "indexedDB", "caches", "alert", "confirm", "prompt", "open", "close", "print",
        "focus", "blur", "scroll", "scrollTo", "scrollBy", "getComputedStyle",
        "getSelection", "matchMedia", "requestAnimationFrame", "cancelAnimationFrame",
        "requestIdleCallback", "cancelIdleCallback", "postMessage", "addEventListener",
        "removeEventListener", "dispatchEvent", "innerWidth", "innerHeight", "outerWidth",
        "outerHeight", "pageXOffset", "pageYOffset", "scrollX", "scrollY", "devicePixelRatio",
        "name", "status", "origin", "external", "chrome", "opera", "cordova", "device",
        "XMLHttpRequest", "XMLSerializer", "DOMParser", "FileReader", "Image", "Audio",
        "Option", "Node", "NodeList", "Element", "HTMLElement", "HTMLDocument",
        "HTMLCollection", "HTMLInputElement", "HTMLFormElement", "HTMLIFrameElement",
        "HTMLCanvasElement", "HTMLImageElement", "HTMLAnchorElement", "SVGElement",
        "Document", "DocumentFragment", "Text", "Comment", "Range", "Selection",
        "MutationObserver", "IntersectionObserver", "ResizeObserver", "Worker",
        "SharedWorker", "ServiceWorker", "Notification", "EventSource", "KeyboardEvent",
        "MouseEvent", "TouchEvent", "FocusEvent", "UIEvent", "PopStateEvent",
        "HashChangeEvent", "StorageEvent", "ErrorEvent", "CloseEvent", "ProgressEvent",
        "Storage", "Location", "History", "Screen", "Window", "CSS", "CSSStyleSheet",
        "FontFace", "WebGLRenderingContext", "CanvasRenderingContext2D", "OffscreenCanvas",
        "ActiveXObject", "Components", "jQuery", "$", "revalify",
    }
)

# Runtime globals the host sets up before any package loads.
RUNTIME_GLOBALS = frozenset(
    {
        "__meteor_runtime_config__",
        "__meteor_bootstrap__",
        "Package",
    }
)

# The three implicit parameters of a two-argument (CommonJS) module.
COMMONJS_PARAMETERS = frozenset({"exports", "module", "require"})

HOST_GLOBALS = (JS_BUILTINS | NODE_GLOBALS | BROWSER_GLOBALS | RUNTIME_GLOBALS) - {"global"}


def is_host_global(name: str, *, is_common: bool = False) -> bool:
    if name in HOST_GLOBALS:
        return True
    return is_common and name in COMMONJS_PARAMETERS
