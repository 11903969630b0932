HTML_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Calculation Sheet</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<style>
  :root{--bg:#fff;--ink:#0b0f17;--muted:#6b7280;--line:#e5e7eb;--bad:#b91c1c;--sticky:#0b0f17;--sticky-ink:#fff}
  html,body{margin:0;padding:0;background:var(--bg);color:var(--ink);font:14px/1.4 system-ui,-apple-system,Segoe UI,Roboto,Arial,"Noto Sans",sans-serif}
  .container{max-width:1200px;margin:0 auto;padding:16px}
  header{display:flex;align-items:flex-end;justify-content:space-between;gap:12px;margin-bottom:12px}
  h1{font-size:20px;margin:0}
  h2{font-size:15px;margin:0 0 8px}
  .desc{color:var(--muted);font-size:12px}
  .btn{border:1px solid var(--line);background:#f8fafc;color:#111827;border-radius:6px;padding:6px 10px;cursor:pointer}
  .btn.small{padding:2px 8px;font-size:12px}
  .layout{display:grid;grid-template-columns:300px 1fr;gap:16px}
  .panel{border:1px solid var(--line);border-radius:8px;padding:12px}
  .catalog-row{display:flex;align-items:center;gap:8px;padding:6px 0;border-bottom:1px solid var(--line)}
  .catalog-row:last-child{border-bottom:0}
  .catalog-row img{width:36px;height:36px;object-fit:cover;border-radius:4px;background:#f3f4f6}
  .catalog-row .name{flex:1;min-width:0;overflow:hidden;text-overflow:ellipsis;white-space:nowrap}
  .cards{display:grid;grid-template-columns:repeat(auto-fill,minmax(280px,1fr));gap:12px}
  .card{border:1px solid var(--line);border-radius:8px;padding:12px;position:relative}
  .card label{display:block;font-size:12px;color:#374151;margin-top:6px}
  .card input, form input, form textarea{width:100%;box-sizing:border-box;border:1px solid var(--line);border-radius:4px;padding:6px;font:inherit}
  .card .remove{position:absolute;top:8px;right:8px}
  .result{margin-top:10px;padding:8px;border-radius:6px;background:#eff6ff;display:flex;justify-content:space-between}
  .result.err{background:#fff1f2;color:var(--bad)}
  .err-msg{color:var(--bad);font-size:12px;padding:4px 0}
  .var-row{display:flex;gap:6px;margin-bottom:6px}
  .strong{font-weight:600}
  .sticky-total{position:sticky;top:0;z-index:10;background:var(--sticky);color:var(--sticky-ink);display:flex;justify-content:center;align-items:center;height:44px;font-size:14px;letter-spacing:.2px}
  .footnote{color:var(--muted);font-size:11px;margin-top:8px}
  .empty{color:var(--muted);text-align:center;padding:48px 0;border:2px dashed var(--line);border-radius:8px}
</style>
</head>
<body>
<div class="sticky-total" id="stickyTotal">Grand Total: 0</div>
<div class="container">
  <header>
    <div>
      <h1>Calculation Sheet</h1>
      <div class="desc">Add items from the catalog. Results update as you type.</div>
    </div>
    <div class="controls">
      <button class="btn" id="newTemplateBtn">+ New template</button>
      <a class="btn" href="/export.pdf">Export PDF</a>
      <a class="btn" href="/export.csv">Export CSV</a>
    </div>
  </header>

  <div class="layout">
    <aside>
      <section class="panel" id="formPanel" hidden>
        <h2 id="formTitle">New template</h2>
        <form id="templateForm">
          <label>Name <input name="name" required></label>
          <label>Image URL <input name="image_ref" placeholder="https://example.com/image.png"></label>
          <div class="strong" style="margin-top:8px">Variables</div>
          <div id="varRows"></div>
          <button type="button" class="btn small" id="addVarBtn">+ Variable</button>
          <label>Formula <textarea name="formula" rows="3" placeholder="(A + B) * 2 * length" required></textarea></label>
          <div class="desc">Operators + - * / ^ and parentheses. PI is available as <span id="piText"></span>.</div>
          <div class="err-msg" id="formError"></div>
          <button type="submit" class="btn">Save</button>
          <button type="button" class="btn" id="cancelFormBtn">Cancel</button>
        </form>
      </section>
      <section class="panel" id="catalogPanel">
        <h2>Catalog <span class="desc" id="catalogCount"></span></h2>
        <div id="catalog"></div>
      </section>
    </aside>
    <main>
      <section id="sheet"></section>
      <div class="footnote">Calculations live in this browser session only.</div>
    </main>
  </div>
</div>

<script id="cfg-json" type="application/json">{CFG_JSON}</script>

<script>
const CONFIG = JSON.parse(document.getElementById('cfg-json').textContent);
let TEMPLATES = [];
let editingId = null;

/* ---------- Utilities ---------- */
async function api(method, url, body){
  const opts = {method, headers:{'Content-Type':'application/json'}};
  if(body !== undefined){ opts.body = JSON.stringify(body); }
  const res = await fetch(url, opts);
  const data = await res.json().catch(()=>({}));
  if(!res.ok){ const err = new Error(data.error || res.statusText); err.data = data; throw err; }
  return data;
}
function el(tag, attrs, text){
  const node = document.createElement(tag);
  Object.entries(attrs || {}).forEach(([k,v])=>{ if(k==='class'){ node.className = v; } else { node.setAttribute(k, v); } });
  if(text !== undefined){ node.textContent = text; }
  return node;
}

/* ---------- Catalog ---------- */
async function loadCatalog(){
  try{ TEMPLATES = await api('GET', '/api/templates'); }
  catch(e){ console.error(e); return; }
  const root = document.getElementById('catalog');
  root.innerHTML = '';
  document.getElementById('catalogCount').textContent = TEMPLATES.length + ' items';
  if(!TEMPLATES.length){ root.appendChild(el('div', {class:'desc'}, 'No templates yet.')); return; }
  TEMPLATES.forEach(t=>{
    const row = el('div', {class:'catalog-row'});
    if(t.image_ref){ row.appendChild(el('img', {src:t.image_ref, alt:''})); }
    row.appendChild(el('div', {class:'name', title:t.formula}, t.name));
    const edit = el('button', {class:'btn small'}, 'Edit');
    edit.onclick = ()=> openForm(t);
    const del = el('button', {class:'btn small'}, 'Delete');
    del.onclick = ()=> deleteTemplate(t);
    const add = el('button', {class:'btn small', title:'Add to calculation'}, '+');
    add.onclick = ()=> addItem(t.id);
    row.append(edit, del, add);
    root.appendChild(row);
  });
}

async function deleteTemplate(t){
  if(!confirm('Delete template "' + t.name + '"?')){ return; }
  try{ await api('DELETE', '/api/templates/' + t.id); }
  catch(e){ alert(e.message); }
  loadCatalog();
}

function addVarRow(v){
  const row = el('div', {class:'var-row'});
  const name = el('input', {placeholder:'Name (A)', value:(v && v.name) || ''});
  const label = el('input', {placeholder:'Label (Width)', value:(v && v.label) || ''});
  const rm = el('button', {type:'button', class:'btn small'}, 'x');
  rm.onclick = ()=> row.remove();
  row.append(name, label, rm);
  document.getElementById('varRows').appendChild(row);
}

function openForm(t){
  editingId = t ? t.id : null;
  const form = document.getElementById('templateForm');
  form.reset();
  document.getElementById('varRows').innerHTML = '';
  document.getElementById('formError').textContent = '';
  document.getElementById('formTitle').textContent = t ? 'Edit template' : 'New template';
  if(t){
    form.elements['name'].value = t.name; form.elements['image_ref'].value = t.image_ref; form.elements['formula'].value = t.formula;
    t.variables.forEach(addVarRow);
  }
  document.getElementById('formPanel').hidden = false;
}

async function submitForm(e){
  e.preventDefault();
  const form = e.currentTarget;
  const variables = Array.from(document.querySelectorAll('#varRows .var-row')).map(r=>{
    const inputs = r.querySelectorAll('input');
    return {name: inputs[0].value, label: inputs[1].value};
  });
  const body = {name: form.elements['name'].value, image_ref: form.elements['image_ref'].value, formula: form.elements['formula'].value, variables};
  try{
    if(editingId){ await api('PUT', '/api/templates/' + editingId, body); }
    else{ await api('POST', '/api/templates', body); }
  }catch(err){
    document.getElementById('formError').textContent = (err.data && err.data.errors || [err.message]).join(' ');
    return;
  }
  document.getElementById('formPanel').hidden = true;
  loadCatalog();
  loadSheet();
}

/* ---------- Sheet ---------- */
function renderResult(card, item){
  const box = card.querySelector('.result');
  box.classList.toggle('err', item.unit_result.state === 'error');
  box.querySelector('.unit').textContent = item.unit_result.display;
  box.querySelector('.total').textContent = item.total_display;
}

function updateTotals(session){
  document.getElementById('stickyTotal').textContent = 'Grand Total: ' + session.grand_total_display;
}

function renderCard(item){
  const card = el('div', {class:'card', 'data-id':item.instance_id});
  const rm = el('button', {class:'btn small remove', title:'Remove from list'}, 'x');
  rm.onclick = ()=> removeItem(item.instance_id);
  card.appendChild(rm);
  card.appendChild(el('h2', {}, item.template.name));
  item.template.variables.forEach(v=>{
    const label = el('label', {}, v.label + ' (' + v.name + ')');
    const input = el('input', {type:'number', step:'any'});
    if(item.values[v.name] !== undefined){ input.value = item.values[v.name]; }
    input.addEventListener('input', ()=> edit(card, 'values/' + encodeURIComponent(v.name), input.value));
    label.appendChild(input);
    card.appendChild(label);
  });
  const qLabel = el('label', {}, 'Quantity');
  const qty = el('input', {type:'number', step:'any', min:'0', value:item.quantity});
  qty.addEventListener('input', ()=> edit(card, 'quantity', qty.value));
  qLabel.appendChild(qty);
  card.appendChild(qLabel);
  const box = el('div', {class:'result'});
  box.append(el('span', {class:'unit'}), el('span', {class:'total strong'}));
  card.appendChild(box);
  renderResult(card, item);
  return card;
}

function renderSheet(session){
  const root = document.getElementById('sheet');
  root.innerHTML = '';
  if(!session.items.length){
    root.appendChild(el('div', {class:'empty'}, 'Your calculation sheet is empty. Add products from the catalog.'));
  }else{
    const cards = el('div', {class:'cards'});
    session.items.forEach(item=> cards.appendChild(renderCard(item)));
    root.appendChild(cards);
  }
  updateTotals(session);
}

async function loadSheet(){
  try{ renderSheet(await api('GET', '/api/session')); }
  catch(e){ console.error(e); }
}

async function addItem(templateId){
  try{ await api('POST', '/api/session/items', {template_id: templateId}); }
  catch(e){ alert(e.message); }
  loadSheet();
}

async function removeItem(instanceId){
  try{ renderSheet(await api('DELETE', '/api/session/items/' + instanceId)); }
  catch(e){ loadSheet(); }
}

async function edit(card, path, value){
  try{
    const data = await api('PUT', '/api/session/items/' + card.dataset.id + '/' + path, {value});
    renderResult(card, data.item);
    updateTotals(data);
  }catch(e){ console.error(e); }
}

/* ---------- Boot ---------- */
document.getElementById('piText').textContent = CONFIG.pi;
document.getElementById('newTemplateBtn').onclick = ()=> openForm(null);
document.getElementById('cancelFormBtn').onclick = ()=> { document.getElementById('formPanel').hidden = true; };
document.getElementById('addVarBtn').onclick = ()=> addVarRow(null);
document.getElementById('templateForm').addEventListener('submit', submitForm);
loadCatalog();
loadSheet();
</script>
</body>
</html>
"""
