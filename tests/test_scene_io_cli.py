import contextlib
import io
import json
import os
import sys
import tempfile
import unittest

import numpy as np

script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(script_dir)
sys.path.insert(0, project_root)

from rig_factory import mixamo_skeleton, rotation_track, sample_clip, ue5_skeleton

from retargetkit.tools.retarget_json import main
from retargetkit.utils.data_types import AnimationClip, AnimationTrack, NodeKind, TrackType
from retargetkit.utils.errors import UnsupportedRigFormat
from retargetkit.utils.scene_io import (
    clip_from_dict,
    clip_to_dict,
    load_document,
    load_skeleton,
    node_from_dict,
    node_to_dict,
    save_document,
    skeleton_to_scene,
)


class TestSceneIO(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def path(self, name):
        return os.path.join(self.tmp.name, name)

    def test_node_dict(self):
        data = node_to_dict(skeleton_to_scene(ue5_skeleton(), "UE5"))
        self.assertEqual(data["kind"], "Group")
        self.assertEqual(data["children"][0]["name"], "root")
        self.assertEqual(data["children"][-1]["kind"], "SkinnedMesh")

        node = node_from_dict(data)
        self.assertEqual(node.children[0].kind, NodeKind.BONE)
        self.assertIn("pelvis", node.children[-1].bone_inverses)

    def test_node_errors(self):
        with self.assertRaises(UnsupportedRigFormat):
            node_from_dict({"kind": "Bone"})
        with self.assertRaises(UnsupportedRigFormat):
            node_from_dict({"name": "Light", "kind": "PointLight"})
        with self.assertRaises(UnsupportedRigFormat):
            node_from_dict({"name": "Body", "kind": "SkinnedMesh", "bone_inverses": {"Hips": [1, 0, 0]}})

    def test_clip_dict(self):
        data = clip_to_dict(sample_clip())
        data["tracks"].append({"name": "Face.morphTargetInfluences", "times": [0.0], "values": [1.0]})

        clip = clip_from_dict(data)
        self.assertEqual(len(clip.tracks), 4)
        self.assertEqual(clip.tracks[0].track_type, TrackType.QUATERNION)
        self.assertEqual(clip.duration, 1.0)
        with self.assertRaises(ValueError):
            clip_from_dict(data, strict=True)

    def test_track_from_name(self):
        track = AnimationTrack.from_name("mixamorig:Hips.position", [0.0, 0.5], [0, 1, 0, 0, 1, 1])
        self.assertEqual(track.bone_name, "mixamorig:Hips")
        self.assertEqual(track.track_type, TrackType.POSITION)
        self.assertEqual(track.keyframe_count, 2)
        with self.assertRaises(ValueError):
            AnimationTrack.from_name("Face.morphTargetInfluences", [0.0], [1.0])
        with self.assertRaises(ValueError):
            AnimationTrack.from_name("Hips.quaternion", [0.0, 1.0], [0, 0, 0, 1])

    def test_document_files(self):
        skel = mixamo_skeleton()
        path = self.path("mixamo.json")
        save_document(path, skeleton_to_scene(skel, "Mixamo"), [sample_clip()])

        loaded, clips = load_skeleton(path)
        self.assertEqual(loaded.names, skel.names)
        self.assertEqual([c.name for c in clips], ["Walk"])
        np.testing.assert_allclose(loaded.world_positions(), skel.world_positions(), atol=1e-12)
        for ours, theirs in zip(loaded.bind_inverses, skel.bind_inverses):
            np.testing.assert_allclose(ours, theirs, atol=1e-12)

    def test_document_errors(self):
        with self.assertRaises(FileNotFoundError):
            load_document(self.path("missing.json"))

        broken = self.path("broken.json")
        with open(broken, "w") as f:
            f.write("{")
        with self.assertRaises(UnsupportedRigFormat):
            load_document(broken)

        no_scene = self.path("clips_only.json")
        with open(no_scene, "w") as f:
            json.dump({"clips": []}, f)
        with self.assertRaises(UnsupportedRigFormat):
            load_document(no_scene)


class TestRetargetCLI(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.source = os.path.join(self.tmp.name, "source.json")
        self.target = os.path.join(self.tmp.name, "target.json")
        self.output = os.path.join(self.tmp.name, "out", "retargeted.json")
        save_document(self.source, skeleton_to_scene(mixamo_skeleton(prefix="mixamorig:"), "Source"),
                      [sample_clip(prefix="mixamorig:")])
        save_document(self.target, skeleton_to_scene(ue5_skeleton(), "Target"), [])

    def tearDown(self):
        self.tmp.cleanup()

    def run_cli(self, *extra):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = main(["-s", self.source, "-t", self.target, "-o", self.output, *extra])
        return code, out.getvalue()

    def test_retarget_with_auto_mapping(self):
        mapping_path = os.path.join(self.tmp.name, "mapping.json")
        code, log = self.run_cli("--save-mapping", mapping_path, "--show-hierarchy")
        self.assertEqual(code, 0)
        self.assertIn("[Retarget] Auto-mapped", log)
        self.assertIn("mixamorig:Hips -> pelvis", log)

        scene, clips = load_document(self.output)
        self.assertEqual([c.name for c in clips], ["Walk_retargeted"])
        self.assertIn("pelvis.position", [t.name for t in clips[0].tracks])
        self.assertEqual(scene.name, "Target")

        with open(mapping_path) as f:
            self.assertEqual(json.load(f)["mapping"]["mixamorig:LeftArm"], "upperarm_l")

        code, log = self.run_cli("--mapping", mapping_path, "--no-root-motion")
        self.assertEqual(code, 0)
        self.assertIn("Loading bone mapping", log)
        _, clips = load_document(self.output)
        self.assertNotIn("pelvis.position", [t.name for t in clips[0].tracks])

    def test_config_file(self):
        config = os.path.join(self.tmp.name, "retarget.yaml")
        with open(config, "w") as f:
            f.write("retarget:\n  use_optimal_scale: false\n  preserve_root_motion: false\n")
        code, _ = self.run_cli("--config", config)
        self.assertEqual(code, 0)
        _, clips = load_document(self.output)
        self.assertNotIn("pelvis.position", [t.name for t in clips[0].tracks])

    def test_failures_return_nonzero(self):
        save_document(
            self.source,
            skeleton_to_scene(mixamo_skeleton(prefix="mixamorig:"), "Source"),
            [AnimationClip("Ghost", 1.0, [rotation_track("Ghost", [0.0, 10.0])])],
        )
        code, _ = self.run_cli()
        self.assertEqual(code, 1)

        code, log = main_with_missing_file(self.output)
        self.assertEqual(code, 1)
        self.assertIn("ERROR", log)


def main_with_missing_file(output):
    out = io.StringIO()
    with contextlib.redirect_stdout(out):
        code = main(["-s", "does_not_exist.json", "-t", "does_not_exist.json", "-o", output])
    return code, out.getvalue()


if __name__ == "__main__":
    unittest.main()
