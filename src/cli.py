#!/usr/bin/env python3
"""
Pipeline CLI: run one data-preparation stage at a time.

Stages read the files written by the stage before them:

    clean         CountMatrix.csv -> CountMatrix_Clean.csv
    transform     CountMatrix_Clean.csv + Metadata.csv -> CountMatrix_Combined(_Melt).csv
    visualize     CountMatrix_Combined_Melt.csv -> figures/
    species-prep  sppdata.csv -> spp_df.csv + sites.shp (+ background points)
    climate-prep  PRISM normals -> MinT.tif / Rain.tif -> clim_df.csv
    habitat-prep  NLCD raster -> hab_df.csv
    assemble      spp_df.csv + hab_df.csv + clim_df.csv -> alldata.csv (+ bkgrddata.csv)
    sdm           alldata.csv -> models, train/test partitions, evaluation
    daymet        sites shapefile -> per-site Daymet daily climate

Examples:
    python -m src.cli clean --data-dir data
    python -m src.cli sdm --test-rows 200 --methods glm rf
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger

from .config import (
    DATA_DIR, LOG_LEVEL, OUTLIER_THRESHOLD, LANDCOVER_BUFFER_M, TEST_ROWS_DEFAULT,
    SDM_METHODS, RANDOM_STATE,
)
from .schema import TARGET_SPECIES
from .logs import configure_logging


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Camera-trap and species distribution data pipeline")
    parser.add_argument("--data-dir", type=Path, default=DATA_DIR, help="Folder holding stage inputs/outputs")
    parser.add_argument("--log-level", default=LOG_LEVEL)
    parser.add_argument("--log-file", type=Path, default=None)
    sub = parser.add_subparsers(dest="stage", required=True)

    p = sub.add_parser("clean", help="Type-convert and drop bad cameras")
    p.add_argument("--threshold", type=float, default=OUTLIER_THRESHOLD)
    p.add_argument("--exclude", nargs="*", default=[], help="Extra Camera_IDs to drop")

    sub.add_parser("transform", help="Join metadata, reshape to long, add occupancy")

    p = sub.add_parser("visualize", help="Plot counts and occupancy")
    p.add_argument("--format", default="html", help="html, png, svg, pdf ...")

    p = sub.add_parser("species-prep", help="Site points and background sample")
    p.add_argument("--outline", type=Path, default=None, help="Boundary shapefile")
    p.add_argument("--species", default=TARGET_SPECIES)

    p = sub.add_parser("climate-prep", help="Average, crop and extract climate rasters")
    p.add_argument("--outline", type=Path, required=True)
    p.add_argument("--download", action="store_true", help="Fetch PRISM normals first")

    p = sub.add_parser("habitat-prep", help="Land-cover proportions around sites")
    p.add_argument("--raster", type=Path, required=True)
    p.add_argument("--legend", type=Path, required=True)
    p.add_argument("--buffer", type=float, default=LANDCOVER_BUFFER_M)

    sub.add_parser("assemble", help="Join species, habitat and climate tables")

    p = sub.add_parser("sdm", help="Fit species distribution models")
    p.add_argument("--response", default=TARGET_SPECIES)
    p.add_argument("--drop", nargs="*", default=["eame"])
    p.add_argument("--test-rows", type=int, default=TEST_ROWS_DEFAULT)
    p.add_argument("--methods", nargs="+", default=list(SDM_METHODS), choices=list(SDM_METHODS))
    p.add_argument("--seed", type=int, default=RANDOM_STATE)

    p = sub.add_parser("daymet", help="Download Daymet daily climate per site")
    p.add_argument("--sites", type=Path, required=True, help="Sites shapefile")
    p.add_argument("--site-col", default=None, help="Site name column (default: Site, else id)")
    p.add_argument("--start", type=int, required=True)
    p.add_argument("--end", type=int, required=True)
    p.add_argument("--force", action="store_true")

    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> None:
    data = Path(args.data_dir)
    ws = data / "workspaces"

    if args.stage == "clean":
        from .cleaning import run_cleaning
        run_cleaning(
            data / "CountMatrix.csv", data / "CountMatrix_Clean.csv", ws / "Data_Cleaning_Workspace.pkl",
            threshold=args.threshold, exclude=args.exclude,
        )
    elif args.stage == "transform":
        from .transformation import run_transformation
        run_transformation(
            data / "CountMatrix_Clean.csv", data / "Metadata.csv",
            data / "CountMatrix_Combined.csv", data / "CountMatrix_Combined_Melt.csv",
            ws / "Data_Transformation_Workspace.pkl",
        )
    elif args.stage == "visualize":
        from .visualization import run_visualization
        run_visualization(data / "CountMatrix_Combined_Melt.csv", data / "figures", fmt=args.format)
    elif args.stage == "species-prep":
        from .sites import run_species_prep
        run_species_prep(
            data / "sppdata.csv", data / "spp_df.csv", data / "sites.shp",
            outline_path=args.outline, background_out=data / "bkgrd_pnts.csv", species=args.species,
        )
    elif args.stage == "climate-prep":
        from .climate import run_climate_prep
        bkgrd = data / "bkgrd_pnts.csv"
        run_climate_prep(
            data / "spp_df.csv", args.outline,
            data / "PRISM_Jun-Jul_minT_30yrnorm", data / "PRISM_Jun-Jul_rain_30yrnorm",
            data, data / "clim_df.csv",
            background_path=bkgrd if bkgrd.exists() else None,
            background_out=data / "bkgrd_clim_df.csv",
            download=args.download,
        )
    elif args.stage == "habitat-prep":
        from .habitat import run_habitat_prep
        bkgrd = data / "bkgrd_pnts.csv"
        run_habitat_prep(
            args.raster, args.legend, data / "spp_df.csv", data / "hab_df.csv", buffer=args.buffer,
            background_path=bkgrd if bkgrd.exists() else None,
            background_out=data / "bkgrd_hab_df.csv",
        )
    elif args.stage == "assemble":
        from .assemble import run_assembly
        background = (data / "bkgrd_pnts.csv", data / "bkgrd_hab_df.csv", data / "bkgrd_clim_df.csv")
        has_background = all(p.exists() for p in background)
        run_assembly(
            data / "spp_df.csv", data / "hab_df.csv", data / "clim_df.csv", data / "alldata.csv",
            ws / "Data4Analysis.pkl",
            background_paths=background if has_background else None,
            background_out=data / "bkgrddata.csv",
        )
    elif args.stage == "sdm":
        from .sdm import run_sdm
        run_sdm(
            data / "alldata.csv", data, response=args.response, drop=args.drop,
            n_test=args.test_rows, methods=args.methods, seed=args.seed,
            workspace_path=ws / "SDMresults.pkl",
        )
    elif args.stage == "daymet":
        from .daymet import run_daymet_download
        run_daymet_download(
            args.sites, data / "sites_df.csv", data / "daymet", args.start, args.end,
            site_col=args.site_col, force=args.force,
        )


def main(argv=None) -> int:
    args = _parse_args(argv)
    configure_logging(args.log_level, args.log_file)
    try:
        run(args)
    except (FileNotFoundError, ValueError) as exc:
        logger.error(f"{args.stage} failed: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
