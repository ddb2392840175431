import argparse
import json
import os
import re
import sys
from pathlib import Path

import requests

# ---------- Config ----------
DEFAULT_BASE_URL = os.getenv("IMPORT_BASE_URL", "http://localhost:8000")
DATA_DIR = os.getenv("DATA_DIR", "./data")
MANIFEST_PATH = os.getenv("IMPORT_MANIFEST", str(Path(DATA_DIR) / "import_manifest.json"))

# Load order (lower means earlier); parents before rows that reference them
ENTITY_ORDER = {
    "books": 10,
    "topics": 20,
    "groups": 30,
    "widgets": 40,
}

# Filename → entity patterns (fallback when no manifest override)
PATTERNS = [
    (r"(^|/)books?([_-].*)?\.csv$", "books"),
    (r"(^|/)topics?([_-].*)?\.csv$", "topics"),
    (r"(^|/)groups?([_-].*)?\.csv$", "groups"),
    (r"(^|/)widgets?([_-].*)?\.csv$", "widgets"),
]

def infer_entity(path: str) -> str | None:
    p = path.replace("\\", "/")
    for pat, ent in PATTERNS:
        if re.search(pat, p, flags=re.IGNORECASE):
            return ent
    return None

def load_manifest(manifest_path: str):
    if not os.path.isfile(manifest_path):
        return None
    with open(manifest_path, "r", encoding="utf-8") as f:
        return json.load(f)

def discover_csvs(root: str):
    return sorted(str(p) for p in Path(root).rglob("*.csv"))

def classify_files(files: list[str], manifest: dict | None):
    """
    Manifest format:
      {"base_url": "...", "options": {"validate": true},
       "overrides": [{"file": "data/x.csv", "entity": "topics", "order": 5}]}
    """
    overrides = {}
    if manifest and "overrides" in manifest:
        for ov in manifest["overrides"]:
            overrides[os.path.normpath(ov["file"])] = ov

    classified = []
    for f in files:
        nf = os.path.normpath(f)
        ov = overrides.get(nf, {})
        entity = ov.get("entity") or infer_entity(nf)
        if not entity:
            print(f"[skip] Unrecognized CSV (no entity match): {f}")
            continue
        order = ov.get("order", ENTITY_ORDER.get(entity, 9999))
        classified.append({"path": nf, "entity": entity, "order": order})
    classified.sort(key=lambda x: (x["order"], x["path"]))
    return classified

def import_file(base_url: str, entity: str, path: str, options: dict | None = None, dry_run: bool = False) -> bool:
    url = f"{base_url.rstrip('/')}/import/csv"
    params = {"entity": entity}
    for k, v in (options or {}).items():
        params[k] = str(v).lower() if isinstance(v, bool) else v
    if dry_run:
        print(f"[dry-run] POST {url}?entity={entity}  file={path}")
        return True
    with open(path, "rb") as f:
        files = {"file": (os.path.basename(path), f, "text/csv")}
        resp = requests.post(url, params=params, files=files, timeout=120)
    if resp.status_code == 200:
        body = resp.json()
        print(f"[ok] {entity:<10} ← {path}  inserted={body.get('num_inserts')} rejected={len(body.get('failed_rows', []))}")
        return True
    print(f"[ERR] {entity:<10} ← {path}\n      {resp.status_code} {resp.text[:400]}")
    return False

def run_import(data_dir: str = DATA_DIR,
               base_url: str = DEFAULT_BASE_URL,
               manifest_path: str = MANIFEST_PATH,
               dry_run: bool = False) -> dict:
    """Callable entrypoint: returns a dict with plan and results."""
    manifest = load_manifest(manifest_path)
    if manifest and "base_url" in manifest and base_url == DEFAULT_BASE_URL:
        base_url = manifest["base_url"]
    options = (manifest or {}).get("options") or {}

    csvs = discover_csvs(data_dir)
    if not csvs:
        return {"ok": False, "base_url": base_url, "plan": [], "results": [],
                "message": f"No CSVs found under {data_dir}"}
    plan = classify_files(csvs, manifest)
    if not plan:
        return {"ok": False, "base_url": base_url, "plan": [], "results": [],
                "message": f"Found {len(csvs)} CSVs but none matched known entities. Check file names or manifest."}
    results = []
    ok_all = True
    for item in plan:
        ok = import_file(base_url, item["entity"], item["path"], options=options, dry_run=dry_run)
        results.append({"entity": item["entity"], "path": item["path"], "ok": ok})
        ok_all = ok_all and ok
    return {"ok": ok_all, "base_url": base_url, "plan": plan, "results": results}

def main(argv=None):
    ap = argparse.ArgumentParser(description="Bulk-import CSVs in dependency order.")
    ap.add_argument("--data", default=DATA_DIR, help="Root data folder (default: env DATA_DIR or ./data)")
    ap.add_argument("--base-url", default=None, help="Importer base URL (default env IMPORT_BASE_URL or http://localhost:8000)")
    ap.add_argument("--manifest", default=MANIFEST_PATH, help="Optional import_manifest.json path")
    ap.add_argument("--dry-run", action="store_true", help="Don’t POST, just show the plan")
    args = ap.parse_args(argv)

    summary = run_import(data_dir=args.data, base_url=args.base_url or DEFAULT_BASE_URL,
                         manifest_path=args.manifest, dry_run=args.dry_run)

    print(f"Importer: {summary['base_url']}")
    print(f"Data root: {args.data}")
    if summary.get("message"):
        print(summary["message"])
    print("-- Import plan --")
    for item in summary["plan"]:
        print(f"{item['order']:>4}  {item['entity']:<10}  {item['path']}")
    sys.exit(0 if summary["ok"] else 2)

if __name__ == "__main__":
    main()
