"""
Script installed into every document of the video site.

It reports matching fetch/XHR exchanges into window.__fnx.queue. Held fetch
responses wait for a reply from the Python side (a replacement body or null)
and are released unchanged after the hold timeout. It also bridges
MutationObserver notifications and DOM events into the same queue; the poll
loop drains it with window.__fnx.drain().
"""

import json
from typing import Any, Dict

PAGE_HOOK_JS = r"""
(function(){
  if (window.__fnx) return;
  const CFG = __FNX_CONFIG__;
  const segmentRe = new RegExp(CFG.segment, 'i');
  const fnx = {
    page: Math.random().toString(36).slice(2) + Date.now().toString(36),
    queue: [],
    replies: {},
    pending: new Set(),
    observers: new Map(),
    listeners: new Map(),
    seq: 0,
    lastSegment: null,
  };
  window.__fnx = fnx;

  const abs = (u) => { try { return new URL(String(u), location.href).href; } catch(_) { return String(u || ''); } };
  const matchKind = (url) => {
    if (!url) return null;
    if (CFG.hold.some(m => url.includes(m))) return 'hold';
    if (CFG.report.some(m => url.includes(m))) return 'report';
    if (segmentRe.test(url)) return 'segment';
    return null;
  };
  const push = (rec) => {
    rec.id = 'x' + (++fnx.seq);
    fnx.queue.push(rec);
    if (fnx.queue.length > CFG.maxQueue) fnx.queue.splice(0, fnx.queue.length - CFG.maxQueue);
    return rec.id;
  };
  const headersToObj = (h) => {
    const out = {};
    try {
      if (!h) return out;
      if (typeof Headers !== 'undefined' && h instanceof Headers) { h.forEach((v, k) => { out[k] = v; }); }
      else if (Array.isArray(h)) { h.forEach((kv) => { out[kv[0]] = String(kv[1]); }); }
      else { Object.keys(h).forEach((k) => { out[k] = String(h[k]); }); }
    } catch(_) {}
    return out;
  };
  const reportSegment = (url) => {
    const m = url.match(segmentRe);
    if (!m || m[1] === fnx.lastSegment) return;
    fnx.lastSegment = m[1];
    push({type: 'exchange', url, headers: {}, status: 200, contentType: '', body: '', held: false});
  };
  const waitReply = (id) => new Promise((resolve) => {
    const started = Date.now();
    const tick = () => {
      if (Object.prototype.hasOwnProperty.call(fnx.replies, id)) {
        const body = fnx.replies[id];
        delete fnx.replies[id];
        resolve(body);
        return;
      }
      if (Date.now() - started >= CFG.holdTimeout) { resolve(null); return; }
      setTimeout(tick, 20);
    };
    tick();
  });
  fnx.reply = (id, body) => { fnx.replies[id] = body; };

  // --- fetch: report, and hold until Python answers ---
  const origFetch = window.fetch;
  if (origFetch) {
    window.fetch = async function(input, init) {
      const res = await origFetch.apply(this, arguments);
      let url = '';
      try { url = abs(typeof input === 'string' ? input : (input && input.url) || input); } catch(_) {}
      const kind = matchKind(url);
      if (!kind) return res;
      try {
        if (kind === 'segment') { reportSegment(url); return res; }
        const headers = Object.assign(headersToObj(input && input.headers), headersToObj(init && init.headers));
        const body = await res.clone().text();
        const held = kind === 'hold';
        const id = push({type: 'exchange', url, headers, status: res.status,
                         contentType: res.headers.get('content-type') || '', body, held});
        if (!held) return res;
        const replaced = await waitReply(id);
        if (replaced === null || replaced === undefined) return res;
        return new Response(replaced, {status: res.status, statusText: res.statusText, headers: res.headers});
      } catch (e) {
        return res;
      }
    };
  }

  // --- XHR: report only ---
  const XO = XMLHttpRequest.prototype.open;
  const XS = XMLHttpRequest.prototype.send;
  const XH = XMLHttpRequest.prototype.setRequestHeader;
  XMLHttpRequest.prototype.open = function(method, url) {
    this.__fnxUrl = abs(url);
    this.__fnxHeaders = {};
    return XO.apply(this, arguments);
  };
  XMLHttpRequest.prototype.setRequestHeader = function(k, v) {
    try { if (this.__fnxHeaders) this.__fnxHeaders[k] = String(v); } catch(_) {}
    return XH.apply(this, arguments);
  };
  XMLHttpRequest.prototype.send = function() {
    const xhr = this;
    const kind = matchKind(xhr.__fnxUrl);
    if (kind === 'segment') {
      reportSegment(xhr.__fnxUrl);
    } else if (kind) {
      xhr.addEventListener('load', function() {
        try {
          const text = (xhr.responseType === '' || xhr.responseType === 'text') ? xhr.responseText : '';
          push({type: 'exchange', url: xhr.__fnxUrl, headers: xhr.__fnxHeaders || {}, status: xhr.status,
                contentType: xhr.getResponseHeader('content-type') || '', body: text, held: false});
        } catch(_) {}
      });
    }
    return XS.apply(this, arguments);
  };

  // --- UI bridge ---
  const player = () => document.querySelector(CFG.player);
  const resolveTarget = (sel) => {
    const p = player();
    if (!sel) return p;
    return p ? p.querySelector(sel) : null;
  };
  fnx.observe = (sub, sel, attributes, subtree) => {
    fnx.unobserve(sub);
    const target = resolveTarget(sel);
    if (!target) return false;
    const mo = new MutationObserver(() => {
      if (fnx.pending.has(sub)) return;
      fnx.pending.add(sub);
      fnx.queue.push({type: 'mutation', sub});
    });
    mo.observe(target, {childList: true, subtree: !!subtree, characterData: !!subtree, attributes: !!attributes});
    fnx.observers.set(sub, mo);
    return true;
  };
  fnx.unobserve = (sub) => {
    const mo = fnx.observers.get(sub);
    if (mo) { mo.disconnect(); fnx.observers.delete(sub); }
    fnx.pending.delete(sub);
  };
  fnx.listen = (sub, type, sel) => {
    fnx.unlisten(sub);
    const handler = (ev) => {
      try {
        if (sel) {
          const t = ev.target && ev.target.closest ? ev.target.closest(sel) : null;
          if (!t) return;
        }
        fnx.queue.push({type: 'event', sub, event: {type: ev.type, key: ev.key || null, trusted: !!ev.isTrusted}});
      } catch(_) {}
    };
    document.addEventListener(type, handler, true);
    fnx.listeners.set(sub, [type, handler]);
    return true;
  };
  fnx.unlisten = (sub) => {
    const l = fnx.listeners.get(sub);
    if (l) { document.removeEventListener(l[0], l[1], true); fnx.listeners.delete(sub); }
  };
  fnx.attenuate = (ms) => {
    const p = player();
    if (!p) return false;
    const prev = p.style.filter;
    p.style.transition = 'filter 0.3s';
    p.style.filter = 'brightness(0.15)';
    setTimeout(() => { try { p.style.filter = prev || ''; } catch(_) {} }, ms);
    return true;
  };
  fnx.drain = () => {
    const out = fnx.queue.splice(0, fnx.queue.length);
    fnx.pending.clear();
    return out;
  };
})();
"""


def build_page_hook(patterns: Dict[str, Any], player_selector: str, hold_timeout_ms: int, max_queue: int = 500) -> str:
    cfg = dict(patterns)
    cfg.update({"player": player_selector, "holdTimeout": int(hold_timeout_ms), "maxQueue": int(max_queue)})
    return PAGE_HOOK_JS.replace("__FNX_CONFIG__", json.dumps(cfg))
