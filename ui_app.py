import os
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pandas as pd
import requests
import streamlit as st

import pricing_config as cfg
from analysis import FALLBACK_GEOMETRY, SUPPORTED_EXTENSIONS, LatestUpload, file_extension
from pricing_engine import EMPTY_GEOMETRY, Geometry, ProcessParameters, calculate_quote

API_BASE = os.environ.get("API_BASE", "http://localhost:8000").rstrip("/")
API_KEY = os.environ.get("API_KEY", "")
ANALYSIS_POLL_S = 0.5


# ----------------------------
# Helpers
# ----------------------------
def _usd(x) -> str:
    try:
        if x is None:
            return ""
        return f"${float(x):,.2f}"
    except (TypeError, ValueError):
        return str(x)


def _dt(x: str) -> str:
    try:
        if not x:
            return ""
        return datetime.fromisoformat(x.replace("Z", "+00:00")).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return str(x)


def _headers() -> dict:
    return {"x-api-key": API_KEY} if API_KEY else {}


def _analyze(file_name: str, content: bytes) -> Geometry:
    r = requests.post(
        f"{API_BASE}/analyze",
        files={"cadFile": (file_name, content)},
        timeout=120,
    )
    if r.status_code != 200:
        try:
            msg = r.json().get("detail") or f"API analysis failed with status: {r.status_code}"
        except ValueError:
            msg = f"API analysis failed with status: {r.status_code}"
        raise RuntimeError(msg)
    return Geometry.from_dict(r.json()["analysisData"])


@st.cache_resource
def _analysis_executor() -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=2, thread_name_prefix="CadAnalysis")


def _cost_distribution(quote) -> pd.DataFrame:
    rows = [
        ("Material Cost", quote.material_cost),
        ("Machine Cost", quote.machine_cost),
        ("Mold Amortization", quote.mold_cost),
        ("Scrap & Premium", quote.scrap_cost + quote.color_premium),
    ]
    df = pd.DataFrame(rows, columns=["Cost", "Per Part"])
    df["Share"] = df["Per Part"] / df["Per Part"].sum()
    return df


# ----------------------------
# Session state
# ----------------------------
if "upload" not in st.session_state:
    st.session_state.upload = LatestUpload()
if "geometry" not in st.session_state:
    st.session_state.geometry = EMPTY_GEOMETRY
if "file_name" not in st.session_state:
    st.session_state.file_name = None
if "error" not in st.session_state:
    st.session_state.error = None
if "params" not in st.session_state:
    st.session_state.params = ProcessParameters(
        material_id=cfg.MATERIALS[0]["name"],
        quantity=cfg.DEFAULT_QUANTITY,
        cavities=1,
        color="natural",
    )

upload: LatestUpload = st.session_state.upload


# ----------------------------
# Page
# ----------------------------
st.set_page_config(page_title="CAD Quote Engine", layout="wide")
st.title("CAD Quote Engine")

with st.sidebar:
    st.subheader("Connection")
    st.code(API_BASE)
    show_history = st.toggle("Quote History", value=False)

if st.session_state.error:
    st.error(st.session_state.error)

# ----------------------------
# Quote history
# ----------------------------
if show_history:
    st.subheader("Quote History")
    try:
        r = requests.get(f"{API_BASE}/quotes", headers=_headers(), timeout=30)
        r.raise_for_status()
        saved = r.json().get("quotes", [])
    except requests.RequestException as e:
        st.error(f"Could not load quote history: {e}")
        saved = []

    if not saved:
        st.info("No saved quotes yet.")

    for q in saved:
        cols = st.columns([3, 1, 1])
        with cols[0]:
            st.markdown(f"**{q['file_name']}**  \n{_usd(q['breakdown']['total_per_part'])} / Part")
            st.caption(f"Saved: {_dt(q.get('created_at'))}")
        with cols[1]:
            if st.button("Load", key=f"load_{q['id']}"):
                st.session_state.file_name = q["file_name"]
                st.session_state.geometry = Geometry.from_dict(q["geometry"])
                st.session_state.params = ProcessParameters.from_dict(q["parameters"])
                upload.begin(q["file_name"])
                st.rerun()
        with cols[2]:
            if st.button("Delete", key=f"del_{q['id']}"):
                d = requests.delete(f"{API_BASE}/quotes/{q['id']}", headers=_headers(), timeout=30)
                if d.status_code != 200:
                    st.session_state.error = f"Failed to delete quote: {d.status_code}"
                st.rerun()

    st.divider()

left, right = st.columns([1, 2], gap="large")

# ----------------------------
# 1. Upload + 2. Parameters
# ----------------------------
with left:
    st.subheader("1. Upload CAD File")
    cad = st.file_uploader(
        "Drag & Drop CAD file or click to browse",
        type=list(SUPPORTED_EXTENSIONS),
    )

    if cad is not None and cad.name != st.session_state.file_name:
        st.session_state.file_name = cad.name
        st.session_state.error = None
        st.session_state.geometry = EMPTY_GEOMETRY
        upload.submit(_analysis_executor(), cad.name, _analyze, cad.name, cad.getvalue())

    try:
        landed = upload.collect()
    except (requests.RequestException, RuntimeError) as e:
        st.session_state.error = f"File processing failed: {e}. Using mock data for UI."
        landed = FALLBACK_GEOMETRY

    if landed is not None:
        st.session_state.geometry = landed
        st.rerun()
    if upload.analyzing():
        with st.spinner("Analyzing part geometry..."):
            time.sleep(ANALYSIS_POLL_S)
        st.rerun()

    st.subheader("2. Configure Parameters")
    p: ProcessParameters = st.session_state.params
    names = [m["name"] for m in cfg.MATERIALS]

    material_id = st.selectbox(
        "Material Selection",
        options=names,
        index=names.index(p.material_id) if p.material_id in names else 0,
        format_func=lambda n: f"{n} ({_usd(next(m['price_per_kg'] for m in cfg.MATERIALS if m['name'] == n))}/kg)",
    )
    quantity = st.number_input(
        "Production Quantity (Units)",
        min_value=cfg.MIN_QUANTITY,
        value=max(cfg.MIN_QUANTITY, p.quantity),
        step=cfg.QUANTITY_STEP,
    )
    cavities = st.selectbox(
        "Number of Cavities",
        options=cfg.CAVITY_OPTIONS,
        index=cfg.CAVITY_OPTIONS.index(p.cavities) if p.cavities in cfg.CAVITY_OPTIONS else 0,
        format_func=lambda c: f"{c} Cavit{'ies' if c > 1 else 'y'}",
    )
    colors = list(cfg.COLOR_OPTIONS.keys())
    color = st.selectbox(
        "Color",
        options=colors,
        index=colors.index(p.color) if p.color in colors else 0,
        format_func=lambda c: cfg.COLOR_OPTIONS[c],
    )

    params = ProcessParameters(
        material_id=str(material_id),
        quantity=int(quantity),
        cavities=int(cavities),
        color=str(color),
    )
    st.session_state.params = params

geometry: Geometry = st.session_state.geometry
show_results = geometry.volume > 0

# ----------------------------
# 3. Analysis + 4. Quote
# ----------------------------
with right:
    st.subheader("3. Part Analysis Results")
    if not show_results:
        st.info("Upload a CAD file to start analysis and view results.")
    else:
        d = geometry.dimensions
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Volume", f"{geometry.volume:.2f} cm³")
        c2.metric("Max Wall Thk", f"{geometry.wall_thickness:.2f} mm")
        c3.metric("BBox (L×W×H)", f"{d.length:g}×{d.width:g}×{d.height:g} mm")
        c4.metric("Accuracy", geometry.accuracy.upper())

        if geometry.accuracy != "high":
            st.warning(
                f"Accuracy Notice: {geometry.accuracy.upper()}. "
                "These results are based on simulated/estimated geometry data."
            )

    st.subheader("4. Real-time Quote")
    quote = calculate_quote(geometry, params) if show_results else None

    if quote is None:
        st.info("Waiting for analysis and parameter configuration...")
        st.stop()

    c1, c2 = st.columns(2)
    c1.metric("Total Cost Per Part (Fully Amortized)", _usd(quote.total_per_part))
    c2.metric(f"Total Run Cost ({params.quantity} parts)", _usd(quote.total_quote))

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total Cycle Time", f"{quote.cycle_time:.1f} s")
    c2.metric("Production Rate", f"{quote.parts_per_hour:.0f} parts/hr")
    c3.metric("Recommended Press", quote.recommended_machine)
    c4.metric("Total Scrap Cost", _usd(quote.scrap_cost * params.quantity))
    st.caption(f"Scrap @ {cfg.SCRAP_RATE * 100:.0f}% rate")

    st.caption("Cost Distribution (Per Part)")
    dist = _cost_distribution(quote)
    st.bar_chart(dist, x="Cost", y="Per Part")
    st.dataframe(
        dist.assign(**{"Per Part": dist["Per Part"].map(_usd), "Share": dist["Share"].map("{:.0%}".format)}),
        use_container_width=True,
        hide_index=True,
    )

    if st.button("Save Quote to History", disabled=not st.session_state.file_name):
        payload = {
            "file_name": st.session_state.file_name,
            "file_extension": file_extension(st.session_state.file_name),
            "geometry": {
                "volume": geometry.volume,
                "dimensions": {
                    "length": geometry.dimensions.length,
                    "width": geometry.dimensions.width,
                    "height": geometry.dimensions.height,
                },
                "wall_thickness": geometry.wall_thickness,
                "surface_area": geometry.surface_area,
                "accuracy": geometry.accuracy,
            },
            "parameters": params.to_dict(),
        }
        try:
            r = requests.post(f"{API_BASE}/quotes", json=payload, headers=_headers(), timeout=30)
        except requests.RequestException as e:
            st.error(f"Failed to save quote: {e}")
            st.stop()

        if r.status_code != 201:
            st.error(f"Failed to save quote: {r.status_code}")
            st.code(r.text)
        else:
            st.success("Quote saved.")
