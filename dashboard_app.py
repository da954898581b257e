#!/usr/bin/env python3
from pathlib import Path

import pandas as pd
import plotly.express as px
import streamlit as st

PARTY_LIST_NAME = "Partiliste"
TABLE_SUFFIX = "_allepartier.csv"


def available_years(base_dir: str = "data/ft") -> list[str]:
    base = Path(base_dir)
    if not base.is_dir():
        return []
    return sorted((p.name for p in base.iterdir() if p.is_dir() and p.name.isdigit()), reverse=True)


def available_storkredse(year_dir: Path) -> list[str]:
    return sorted(p.name[: -len(TABLE_SUFFIX)] for p in year_dir.glob(f"*{TABLE_SUFFIX}"))


def available_kredse(year_dir: Path, storkreds: str) -> list[str]:
    return sorted(p.name[: -len(TABLE_SUFFIX)] for p in (year_dir / storkreds).glob(f"*{TABLE_SUFFIX}"))


@st.cache_data(show_spinner=False)
def load_table(path: str) -> pd.DataFrame:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df["stemmer"] = pd.to_numeric(df["stemmer"], errors="coerce").fillna(0).astype(int)
    return df


def party_totals(df: pd.DataFrame) -> pd.DataFrame:
    """Party list votes plus personal votes per party."""
    agg = (
        df.groupby(["parti", "parti_bogstav"], as_index=False)["stemmer"].sum().sort_values("stemmer", ascending=False)
    )
    total = agg["stemmer"].sum()
    agg["share"] = agg["stemmer"] / total if total else 0.0
    return agg.reset_index(drop=True)


def candidate_ranking(df: pd.DataFrame) -> pd.DataFrame:
    cand = df[df["kandidat_navn"] != PARTY_LIST_NAME]
    return (
        cand.groupby(["kandidat_navn", "parti", "parti_bogstav"], as_index=False)["stemmer"]
        .sum()
        .sort_values(["stemmer", "kandidat_navn"], ascending=[False, True])
        .reset_index(drop=True)
    )


def station_matrix(df: pd.DataFrame) -> pd.DataFrame:
    return df.pivot_table(
        index=["valgsted_id", "valgsted_navn"],
        columns="parti_bogstav",
        values="stemmer",
        aggfunc="sum",
        fill_value=0,
    ).reset_index()


def main(base_dir: str = "data/ft") -> None:
    st.set_page_config(page_title="Folketingsvalg preview", layout="wide")
    st.title("Folketingsvalg – preview af CSV-tabeller")

    years = available_years(base_dir)
    if not years:
        st.error(f"Ingen år fundet under {base_dir}. Kør scripts/build_ft_csv.py først.")
        return

    with st.sidebar:
        st.header("Filtre")
        year = st.selectbox("År", years, index=0)
        year_dir = Path(base_dir) / year
        storkredse = available_storkredse(year_dir)
        if not storkredse:
            st.error(f"Ingen storkredse i {year_dir}")
            return
        storkreds = st.selectbox("Storkreds", storkredse, index=0)
        kredse = ["Hele storkredsen"] + available_kredse(year_dir, storkreds)
        kreds = st.selectbox("Opstillingskreds", kredse, index=0)

    if kreds == "Hele storkredsen":
        path = year_dir / f"{storkreds}{TABLE_SUFFIX}"
    else:
        path = year_dir / storkreds / f"{kreds}{TABLE_SUFFIX}"
    df = load_table(str(path))

    col1, col2, col3 = st.columns(3)
    col1.metric("Afstemningsområder", f"{df['valgsted_id'].nunique():,}")
    col2.metric("Kandidater", f"{df.loc[df['kandidat_navn'] != PARTY_LIST_NAME, 'kandidat_navn'].nunique():,}")
    col3.metric("Stemmer i alt", f"{int(df['stemmer'].sum()):,}")

    tab1, tab2, tab3 = st.tabs(["Partier", "Kandidater", "Afstemningsområder"])

    with tab1:
        totals = party_totals(df)
        fig = px.bar(totals, x="parti", y="stemmer", color="parti", text="stemmer", title="Stemmer pr. parti")
        fig.update_layout(showlegend=False, xaxis_title="Parti", yaxis_title="Stemmer")
        st.plotly_chart(fig, use_container_width=True)
        st.dataframe(totals, use_container_width=True, hide_index=True)

    with tab2:
        top_n = st.slider("Top N kandidater", 5, 50, 20)
        ranking = candidate_ranking(df)
        fig_cand = px.bar(ranking.head(top_n), x="kandidat_navn", y="stemmer", color="parti", title="Personlige stemmer")
        fig_cand.update_layout(xaxis_title="Kandidat", yaxis_title="Stemmer")
        st.plotly_chart(fig_cand, use_container_width=True)
        st.dataframe(ranking, use_container_width=True, hide_index=True)

    with tab3:
        st.dataframe(station_matrix(df), use_container_width=True, hide_index=True)

    st.markdown("---")
    st.caption("Run: streamlit run dashboard_app.py")


if __name__ == "__main__":
    main()
