from __future__ import annotations

PAGE_AGENT_VERSION = "3"


# NOTE: This script is self-contained and idempotent. It runs in the live page
# (main world) and exposes `globalThis.__loggerBridge.handle(request)`, which answers
# one typed request with `{success: true, ...}` or `{success: false, error, stack?}`.
# It never throws: scripting errors are caught and reported.
#
# Request types: GET_DOM, GET_ELEMENT, CLICK, TYPE, SCROLL, GET_STORAGE, SET_STORAGE, EXECUTE.
PAGE_AGENT_SOURCE = r"""
(() => {
  const VERSION = "3";
  const g = globalThis;
  if (g.__loggerBridge && g.__loggerBridge.version === VERSION) {
    return { ok: true, already: true, version: VERSION };
  }

  const MAX_HTML = 500000;

  function clip(s, n) {
    s = s == null ? "" : String(s);
    if (s.length <= n) return s;
    const last = s.charCodeAt(n - 1);
    // Never cut between the halves of a surrogate pair.
    return s.slice(0, last >= 0xd800 && last <= 0xdbff ? n - 1 : n);
  }

  function notFound(selector) {
    return { success: false, error: "Element not found", selector: selector };
  }

  function find(selector) {
    if (typeof selector !== "string" || !selector) return null;
    return document.querySelector(selector);
  }

  function describe(el) {
    const rect = el.getBoundingClientRect();
    return {
      tagName: el.tagName,
      id: el.id,
      className: typeof el.className === "string" ? el.className : String(el.getAttribute("class") || ""),
      textContent: clip(el.textContent, 100),
      attributes: Array.from(el.attributes).map((a) => ({ name: a.name, value: a.value })),
      dimensions: { width: rect.width, height: rect.height, top: rect.top, left: rect.left },
      innerHTML: clip(el.innerHTML, 500),
    };
  }

  function toJsonSafe(value) {
    if (value === undefined) return null;
    try {
      return JSON.parse(JSON.stringify(value));
    } catch (_e) {
      return String(value);
    }
  }

  function pickStorage(which) {
    return which === "session" ? g.sessionStorage : g.localStorage;
  }

  function dumpStorage(s) {
    const out = {};
    for (let i = 0; i < s.length; i++) {
      const k = s.key(i);
      if (k != null) out[k] = s.getItem(k);
    }
    return out;
  }

  function setValue(el, text) {
    const proto = el instanceof HTMLTextAreaElement ? HTMLTextAreaElement.prototype : HTMLInputElement.prototype;
    const desc = Object.getOwnPropertyDescriptor(proto, "value");
    if (desc && desc.set && (el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement)) {
      desc.set.call(el, text);
    } else {
      el.value = text;
    }
  }

  const handlers = {
    GET_DOM(req) {
      if (req.selector) {
        const el = find(req.selector);
        if (!el) return notFound(req.selector);
        return { success: true, selector: req.selector, html: clip(el.outerHTML, MAX_HTML), element: describe(el) };
      }
      return {
        success: true,
        url: location.href,
        title: document.title,
        html: clip(document.documentElement.outerHTML, MAX_HTML),
      };
    },

    GET_ELEMENT(req) {
      const el = find(req.selector);
      if (!el) return notFound(req.selector);
      return { success: true, selector: req.selector, element: describe(el) };
    },

    CLICK(req) {
      const el = find(req.selector);
      if (!el) return notFound(req.selector);
      if (el.scrollIntoView) el.scrollIntoView({ block: "center", inline: "center" });
      el.click();
      return { success: true, selector: req.selector };
    },

    TYPE(req) {
      const el = find(req.selector);
      if (!el) return notFound(req.selector);
      const text = req.text == null ? "" : String(req.text);
      if (el.focus) el.focus();
      if (el.isContentEditable) {
        el.textContent = req.clear === false ? el.textContent + text : text;
      } else {
        setValue(el, req.clear === false ? String(el.value || "") + text : text);
      }
      el.dispatchEvent(new Event("input", { bubbles: true }));
      el.dispatchEvent(new Event("change", { bubbles: true }));
      return { success: true, selector: req.selector, length: text.length };
    },

    SCROLL(req) {
      if (req.selector) {
        const el = find(req.selector);
        if (!el) return notFound(req.selector);
        el.scrollIntoView({ block: "center" });
      } else if (typeof req.x === "number" || typeof req.y === "number") {
        window.scrollBy(Number(req.x || 0), Number(req.y || 0));
      } else if (req.direction === "top") {
        window.scrollTo(0, 0);
      } else if (req.direction === "bottom") {
        window.scrollTo(0, document.documentElement.scrollHeight);
      } else {
        window.scrollBy(0, window.innerHeight);
      }
      return { success: true, scrollX: window.scrollX, scrollY: window.scrollY };
    },

    GET_STORAGE(req) {
      if (req.storage === "local" || req.storage === "session") {
        return { success: true, storage: req.storage, data: dumpStorage(pickStorage(req.storage)) };
      }
      return {
        success: true,
        storage: "all",
        localStorage: dumpStorage(g.localStorage),
        sessionStorage: dumpStorage(g.sessionStorage),
      };
    },

    SET_STORAGE(req) {
      if (typeof req.key !== "string" || !req.key) return { success: false, error: "Storage key is required" };
      const s = pickStorage(req.storage);
      if (req.value === null || req.value === undefined) {
        s.removeItem(req.key);
      } else {
        s.setItem(req.key, typeof req.value === "string" ? req.value : JSON.stringify(req.value));
      }
      return { success: true, storage: req.storage === "session" ? "session" : "local", key: req.key };
    },

    async EXECUTE(req) {
      const code = String(req.code || "");
      let value;
      try {
        value = (0, eval)(code);
      } catch (e) {
        if (!(e instanceof SyntaxError)) throw e;
        const AsyncFunction = Object.getPrototypeOf(async function () {}).constructor;
        value = new AsyncFunction(code)();
      }
      value = await value;
      return { success: true, result: toJsonSafe(value) };
    },
  };

  g.__loggerBridge = {
    version: VERSION,
    async handle(req) {
      const type = req && req.type;
      const fn = handlers[type];
      if (!fn) return { success: false, error: "Unknown request type: " + String(type) };
      try {
        return await fn(req);
      } catch (e) {
        return {
          success: false,
          error: String(e && e.message ? e.message : e),
          stack: e && e.stack ? String(e.stack) : undefined,
        };
      }
    },
  };
  return { ok: true, version: VERSION };
})()
"""

__all__ = ["PAGE_AGENT_SOURCE", "PAGE_AGENT_VERSION"]
