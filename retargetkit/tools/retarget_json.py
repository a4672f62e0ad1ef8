from __future__ import annotations

import argparse
import os
import sys

from tqdm import tqdm

from retargetkit.utils.data_types import AnimationClip
from retargetkit.utils.errors import RetargetError, Severity
from retargetkit.utils.retarget_engine import ClipStatus, RetargetOptions
from retargetkit.utils.retarget_manager import RetargetManager
from retargetkit.utils.scene_io import load_document, save_document
from retargetkit.utils.skeleton_analyzer import analyze_structure, format_hierarchy


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Retarget animation clips between two rigs stored as JSON scenes.")
    parser.add_argument("--source", "-s", required=True, help="Source document (scene + clips)")
    parser.add_argument("--target", "-t", required=True, help="Target document (scene)")
    parser.add_argument("--output", "-o", required=True, help="Output document with retargeted clips")
    parser.add_argument(
        "--mapping",
        "-m",
        default="",
        help="Optional bone mapping file (automatic role-based mapping if not provided)",
    )
    parser.add_argument("--save-mapping", default="", help="Write the mapping that was used to this file")
    parser.add_argument("--include-hands", action="store_true", help="Also map finger bones")
    parser.add_argument("--config", "-c", default="", help="YAML file with retarget options")
    parser.add_argument(
        "--coordinate-correction",
        action="store_true",
        help="Rotate root rotation and root motion by the coordinate correction (-90 deg around Y)",
    )
    parser.add_argument("--no-root-motion", action="store_true", help="Drop root position tracks")
    parser.add_argument("--world-space", action="store_true", help="Use the world-space quaternion path")
    parser.add_argument("--source-root", default=None, help="Override the detected source root bone")
    parser.add_argument("--target-root", default=None, help="Override the detected target root bone")
    parser.add_argument("--show-hierarchy", action="store_true", help="Print both hierarchies with mappings")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print every diagnostic")
    return parser


def _print_diagnostics(diagnostics, verbose: bool):
    for d in diagnostics:
        if verbose or d.severity is not Severity.INFO:
            print(f"  {d}")


def run(args) -> int:
    options = RetargetOptions.from_yaml(args.config) if args.config else RetargetOptions()
    changes = {}
    if args.coordinate_correction:
        changes["coordinate_correction_enabled"] = True
    if args.no_root_motion:
        changes["preserve_root_motion"] = False
    if args.world_space:
        changes["use_world_space_transformation"] = True
    if changes:
        options = options.replace(**changes)

    print(f"[Retarget] Loading source: {args.source}")
    src_scene, src_clips = load_document(args.source)
    print(f"[Retarget] Loading target: {args.target}")
    trg_scene, _ = load_document(args.target)

    manager = RetargetManager(options)
    manager.set_source(src_scene, src_clips)
    manager.set_target(trg_scene)
    if args.source_root:
        manager.set_source_root(args.source_root)
    if args.target_root:
        manager.set_target_root(args.target_root)

    for label, skel in (("Source", manager.source), ("Target", manager.target)):
        info = analyze_structure(skel)
        print(f"[Retarget] {label}: {info['bone_count']} bones, roots={info['root_bones']}, depth={info['max_depth']}")
        _print_diagnostics(skel.diagnostics, args.verbose)

    if args.mapping and os.path.exists(args.mapping):
        print(f"[Retarget] Loading bone mapping: {args.mapping}")
        mapping = manager.load_mapping(args.mapping)
    else:
        if args.mapping:
            print(f"[Retarget] Mapping file not found, using automatic mapping: {args.mapping}")
        mapping = manager.auto_map(include_hands=args.include_hands)
        print(
            f"[Retarget] Auto-mapped {len(mapping)} bones "
            f"({mapping.source_rig_type.value} -> {mapping.target_rig_type.value}, "
            f"confidence {mapping.confidence:.2f})"
        )
        _print_diagnostics(mapping.diagnostics, args.verbose)

    if args.save_mapping:
        manager.save_mapping(args.save_mapping)
        print(f"[Retarget] Saved bone mapping: {args.save_mapping}")

    if args.show_hierarchy:
        for label, is_source in (("Source", True), ("Target", False)):
            print(f"\n[Retarget] {label} hierarchy:")
            for line in format_hierarchy(manager.build_hierarchy(is_source)):
                print(f"  {line}")

    report = manager.initialize()
    print(
        f"\n[Retarget] Initialized: {report.mapped_bones} bones mapped, "
        f"proportion ratio {report.proportion_ratio:.3f}"
    )
    if report.pose_validation is not None:
        print(
            f"  Poses: source={report.pose_validation.source_pose.value}, "
            f"target={report.pose_validation.target_pose.value}"
        )
    _print_diagnostics(report.diagnostics, args.verbose)
    if report.mapped_bones < 15:
        print(f"  [WARNING] Very few bones mapped ({report.mapped_bones}). Retargeting might be poor.")

    outputs: list[AnimationClip] = []
    failed = 0
    for clip in tqdm(src_clips, desc="Retargeting", unit="clip", disable=not src_clips):
        batch = manager.retarget_all([clip])
        outcome = batch.outcomes[0]
        if outcome.status is ClipStatus.OK:
            outputs.append(outcome.clip)
        else:
            failed += 1
            tqdm.write(f"[Retarget] Clip '{outcome.source_name}' failed: {outcome.reason}")
        if args.verbose:
            for d in outcome.diagnostics:
                tqdm.write(f"  {d}")

    save_document(args.output, trg_scene, outputs)
    print(f"\n[Retarget] Retargeted {len(outputs)}/{len(src_clips)} clips ({failed} failed) -> {args.output}")

    if src_clips and not outputs:
        return 1
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except (RetargetError, FileNotFoundError, ValueError) as e:
        print(f"[Retarget] ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
