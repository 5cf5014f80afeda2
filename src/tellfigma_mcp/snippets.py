"""JavaScript snippets behind the canvas tools.

Each builder returns source for :meth:`CodeExecutor.execute`, which wraps
it in an async function, so snippets ``return`` their result. Caller
strings are embedded with ``json.dumps``; numbers are coerced and capped
here before they reach the page.
"""

from __future__ import annotations

import json

MAX_HISTORY_STEPS = 50
MAX_CLONES = 50

EXPORT_FORMATS = ("PNG", "SVG", "JPG", "PDF")
ZOOM_TARGETS = ("selection", "all", "nodeId")

EXPORT_MIME_TYPES = {
    "PNG": "image/png",
    "JPG": "image/jpeg",
    "SVG": "image/svg+xml",
    "PDF": "application/pdf",
}

VIEWPORT_EXPRESSION = (
    "JSON.stringify({ width: window.innerWidth, height: window.innerHeight })"
)

LOCATION_EXPRESSION = "JSON.stringify(window.location.href)"

STATUS_EXPRESSION = """JSON.stringify({
  figmaAvailable: typeof figma !== 'undefined',
  url: window.location.href,
  title: document.title,
  pageName: typeof figma !== 'undefined' ? figma.currentPage.name : null,
  canCreate: typeof figma !== 'undefined' ? typeof figma.createFrame === 'function' : false,
})"""

PAGE_CONTEXT_EXPRESSION = """JSON.stringify({
  url: window.location.href,
  title: document.title,
  hasFigma: typeof figma !== 'undefined',
  pageInfo: typeof figma !== 'undefined' ? {
    pageName: figma.currentPage.name,
    childCount: figma.currentPage.children.length,
    selection: figma.currentPage.selection.map(n => ({
      id: n.id, name: n.name, type: n.type
    })),
    topLevelNodes: figma.currentPage.children.slice(0, 20).map(n => ({
      id: n.id, name: n.name, type: n.type,
      width: 'width' in n ? Math.round(n.width) : null,
      height: 'height' in n ? Math.round(n.height) : null,
    }))
  } : null
})"""


def _cap(value: int | float | None, default: int, limit: int) -> int:
    count = default if value is None else int(value)
    return max(1, min(count, limit))


def _node_lookup(node_id: str | None) -> str:
    """Resolve ``node`` from an id or fall back to the first selected node."""
    if node_id:
        lookup = f"await figma.getNodeByIdAsync({json.dumps(node_id)})"
    else:
        lookup = "figma.currentPage.selection[0]"
    return (
        f"const node = {lookup};\n"
        "if (!node) throw new Error('No node found. Select a node or provide a nodeId.');\n"
    )


def history_snippet(action: str, steps: int | None = 1) -> str:
    """Undo or redo ``steps`` times (capped)."""
    if action not in ("undo", "redo"):
        raise ValueError(f"Unknown history action: {action}")
    count = _cap(steps, 1, MAX_HISTORY_STEPS)
    verb = "Undid" if action == "undo" else "Redid"
    label = "Undo" if action == "undo" else "Redo"
    return f"""try {{
  for (let i = 0; i < {count}; i++) {{
    figma.{action}();
  }}
  return "{verb} {count} step(s)";
}} catch (e) {{
  return "{label} may not be available via API: " + e.message;
}}"""


def select_nodes_snippet(
    query: str | None = None, node_type: str | None = None, select: bool = True
) -> str:
    conditions = []
    if query:
        conditions.append(f"n.name.toLowerCase().includes({json.dumps(query.lower())})")
    if node_type:
        conditions.append(f"n.type === {json.dumps(node_type.upper())}")
    predicate = " && ".join(conditions) or "true"

    select_code = ""
    if select:
        select_code = (
            "figma.currentPage.selection = matches;\n"
            "if (matches.length > 0) figma.viewport.scrollAndZoomIntoView(matches);\n"
        )
    return f"""const matches = figma.currentPage.findAll(n => {predicate});
{select_code}return {{
  count: matches.length,
  nodes: matches.slice(0, 50).map(n => ({{
    id: n.id, name: n.name, type: n.type,
    width: 'width' in n ? Math.round(n.width) : null,
    height: 'height' in n ? Math.round(n.height) : null,
    x: 'x' in n ? Math.round(n.x) : null,
    y: 'y' in n ? Math.round(n.y) : null,
  }}))
}};"""


def list_components_snippet(query: str | None = None) -> str:
    predicate = "(n.type === 'COMPONENT' || n.type === 'COMPONENT_SET')"
    if query:
        predicate += f" && n.name.toLowerCase().includes({json.dumps(query.lower())})"
    return f"""const components = figma.currentPage.findAll(n => {predicate});
return {{
  count: components.length,
  components: components.slice(0, 100).map(c => ({{
    id: c.id,
    name: c.name,
    type: c.type,
    width: Math.round(c.width),
    height: Math.round(c.height),
    description: 'description' in c ? c.description : '',
    variantProperties: c.type === 'COMPONENT_SET' && 'variantGroupProperties' in c
      ? Object.keys(c.variantGroupProperties) : [],
  }}))
}};"""


def export_node_snippet(
    node_id: str | None = None, fmt: str = "PNG", scale: float = 2
) -> str:
    fmt = fmt.upper()
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {fmt}")
    settings = f"format: {json.dumps(fmt)}"
    if fmt in ("PNG", "JPG"):
        settings += f", constraint: {{ type: 'SCALE', value: {float(scale):g} }}"
    return (
        _node_lookup(node_id)
        + f"""if (!('exportAsync' in node)) throw new Error('This node type cannot be exported.');
const bytes = await node.exportAsync({{ {settings} }});
return {{
  name: node.name,
  format: {json.dumps(fmt)},
  base64: figma.base64Encode(bytes),
  byteLength: bytes.length,
}};"""
    )


READ_SELECTION_SNIPPET = """const sel = figma.currentPage.selection;
if (sel.length === 0) return { error: 'Nothing selected. Select a node first.' };

const hex = c => '#' + [c.r, c.g, c.b]
  .map(v => Math.round(v * 255).toString(16).padStart(2, '0')).join('');

function inspectNode(n, depth) {
  if (depth > 3) return { id: n.id, name: n.name, type: n.type, note: '(depth limit)' };
  const info = {
    id: n.id, name: n.name, type: n.type,
    x: 'x' in n ? Math.round(n.x) : undefined,
    y: 'y' in n ? Math.round(n.y) : undefined,
    width: 'width' in n ? Math.round(n.width) : undefined,
    height: 'height' in n ? Math.round(n.height) : undefined,
  };

  if ('fills' in n && n.fills !== figma.mixed && Array.isArray(n.fills)) {
    info.fills = n.fills.map(f => f.type === 'SOLID'
      ? { type: 'SOLID', hex: hex(f.color), opacity: f.opacity !== undefined ? f.opacity : 1 }
      : { type: f.type });
  }

  if ('strokes' in n && Array.isArray(n.strokes) && n.strokes.length > 0) {
    info.strokes = n.strokes.map(s => s.type === 'SOLID'
      ? { type: 'SOLID', hex: hex(s.color) }
      : { type: s.type });
    info.strokeWeight = n.strokeWeight;
    info.strokeAlign = n.strokeAlign;
  }

  if ('effects' in n && Array.isArray(n.effects) && n.effects.length > 0) {
    info.effects = n.effects.map(e => ({
      type: e.type, visible: e.visible, radius: e.radius, offset: e.offset, spread: e.spread,
    }));
  }

  if ('cornerRadius' in n) {
    info.cornerRadius = n.cornerRadius !== figma.mixed ? n.cornerRadius : {
      topLeft: n.topLeftRadius, topRight: n.topRightRadius,
      bottomLeft: n.bottomLeftRadius, bottomRight: n.bottomRightRadius,
    };
  }

  if ('layoutMode' in n && n.layoutMode !== 'NONE') {
    info.layout = {
      mode: n.layoutMode,
      primaryAxisSizing: n.primaryAxisSizingMode,
      counterAxisSizing: n.counterAxisSizingMode,
      primaryAxisAlign: n.primaryAxisAlignItems,
      counterAxisAlign: n.counterAxisAlignItems,
      padding: { top: n.paddingTop, right: n.paddingRight, bottom: n.paddingBottom, left: n.paddingLeft },
      itemSpacing: n.itemSpacing,
    };
  }

  if ('layoutSizingHorizontal' in n) {
    info.layoutSizing = { horizontal: n.layoutSizingHorizontal, vertical: n.layoutSizingVertical };
  }

  if (n.type === 'TEXT') {
    info.text = {
      characters: n.characters.slice(0, 200),
      fontSize: n.fontSize !== figma.mixed ? n.fontSize : 'mixed',
      fontName: n.fontName !== figma.mixed ? n.fontName : 'mixed',
      textAlignH: n.textAlignHorizontal,
      textAlignV: n.textAlignVertical,
      textAutoResize: n.textAutoResize,
      lineHeight: n.lineHeight !== figma.mixed ? n.lineHeight : 'mixed',
    };
  }

  if ('opacity' in n && n.opacity !== 1) info.opacity = n.opacity;

  if ('children' in n && n.children.length > 0) {
    info.childCount = n.children.length;
    info.children = n.children.slice(0, 20).map(c => inspectNode(c, depth + 1));
  }
  return info;
}

return sel.map(n => inspectNode(n, 0));"""


def get_variables_snippet(collection_name: str | None = None) -> str:
    collections = "collections"
    if collection_name:
        needle = json.dumps(collection_name.lower())
        collections = f"collections.filter(c => c.name.toLowerCase().includes({needle}))"
    return f"""const collections = await figma.variables.getLocalVariableCollectionsAsync();
const variables = await figma.variables.getLocalVariablesAsync();
const filtered = {collections};

return filtered.map(col => ({{
  id: col.id,
  name: col.name,
  modes: col.modes.map(m => ({{ id: m.modeId, name: m.name }})),
  variables: variables
    .filter(v => v.variableCollectionId === col.id)
    .slice(0, 100)
    .map(v => {{
      const firstModeId = col.modes[0] ? col.modes[0].modeId : undefined;
      const value = firstModeId ? v.valuesByMode[firstModeId] : undefined;
      let resolved = value;
      if (value && typeof value === 'object' && 'r' in value) {{
        resolved = {{
          r: Math.round(value.r * 255),
          g: Math.round(value.g * 255),
          b: Math.round(value.b * 255),
          a: value.a !== undefined ? value.a : 1,
          hex: '#' + [value.r, value.g, value.b]
            .map(c => Math.round(c * 255).toString(16).padStart(2, '0')).join(''),
        }};
      }}
      return {{ id: v.id, name: v.name, type: v.resolvedType, value: resolved }};
    }}),
}}));"""


def duplicate_node_snippet(
    node_id: str | None = None,
    offset_x: float = 20,
    offset_y: float = 20,
    count: int | None = 1,
) -> str:
    clones = _cap(count, 1, MAX_CLONES)
    return (
        _node_lookup(node_id)
        + f"""if (!('clone' in node)) throw new Error('This node type cannot be cloned.');
const created = [];
for (let i = 0; i < {clones}; i++) {{
  const clone = node.clone();
  if ('x' in clone && 'x' in node) {{
    clone.x = node.x + {float(offset_x):g} * (i + 1);
    clone.y = node.y + {float(offset_y):g} * (i + 1);
  }}
  created.push(clone);
}}
figma.currentPage.selection = created;
figma.viewport.scrollAndZoomIntoView(created);
return {{
  duplicated: node.name,
  clones: created.map(c => ({{ id: c.id, name: c.name, type: c.type }})),
}};"""
    )


GET_STYLES_SNIPPET = """const paintStyles = (await figma.getLocalPaintStylesAsync()).map(s => ({
  id: s.id, name: s.name, type: 'PAINT',
  paints: s.paints.map(p => p.type === 'SOLID'
    ? { type: 'SOLID', r: Math.round(p.color.r * 255), g: Math.round(p.color.g * 255),
        b: Math.round(p.color.b * 255), a: p.opacity }
    : { type: p.type }),
}));
const textStyles = (await figma.getLocalTextStylesAsync()).map(s => ({
  id: s.id, name: s.name, type: 'TEXT',
  fontFamily: s.fontName.family, fontStyle: s.fontName.style, fontSize: s.fontSize,
  lineHeight: s.lineHeight, letterSpacing: s.letterSpacing,
}));
const effectStyles = (await figma.getLocalEffectStylesAsync()).map(s => ({
  id: s.id, name: s.name, type: 'EFFECT',
  effects: s.effects.map(e => ({ type: e.type, visible: e.visible })),
}));
const gridStyles = (await figma.getLocalGridStylesAsync()).map(s => ({
  id: s.id, name: s.name, type: 'GRID',
  grids: s.layoutGrids.map(g => ({ pattern: g.pattern, sectionSize: g.sectionSize })),
}));
return {
  paintStyles, textStyles, effectStyles, gridStyles,
  total: paintStyles.length + textStyles.length + effectStyles.length + gridStyles.length,
};"""


def zoom_to_snippet(target: str = "selection", node_id: str | None = None) -> str:
    if target == "selection":
        return """const sel = figma.currentPage.selection;
if (sel.length === 0) return "Nothing selected";
figma.viewport.scrollAndZoomIntoView(sel);
return "Zoomed to " + sel.length + " selected node(s)";"""
    if target == "all":
        return """figma.viewport.scrollAndZoomIntoView(figma.currentPage.children);
return "Zoomed to fit all " + figma.currentPage.children.length + " top-level nodes";"""
    if target == "nodeId":
        if not node_id:
            raise ValueError('node_id is required when target is "nodeId"')
        literal = json.dumps(node_id)
        return f"""const node = await figma.getNodeByIdAsync({literal});
if (!node) return "Node not found: " + {literal};
figma.viewport.scrollAndZoomIntoView([node]);
return "Zoomed to " + node.name;"""
    raise ValueError(f"Unknown zoom target: {target}")
