# =============================================================================
# Humanoid Role Patterns
# =============================================================================
# Role -> candidate bone name patterns. Patterns are written as they appear in
# common rigs and normalized once at import (see bone_mapper.ROLE_TABLE).
# Order matters: roles are matched first to last and a target bone is only
# assigned to the first role that claims it.

BASE_ROLE_PATTERNS = {
    "Root": ["root", "reference", "armature"],
    "Hips": ["hips", "pelvis", "hip"],
    "Spine": ["spine", "spine1", "spine_01"],
    "Spine1": ["spine1", "spine2", "spine_02", "chest"],
    "Spine2": ["spine2", "spine3", "spine_03", "upperchest", "upper_chest"],
    "Neck": ["neck", "neck1", "neck_01"],
    "Head": ["head"],
    # Left arm
    "LeftShoulder": ["leftshoulder", "left_shoulder", "shoulder_l", "clavicle_l", "l_clavicle"],
    "LeftArm": ["leftarm", "left_arm", "upperarm_l", "arm_l", "l_upperarm"],
    "LeftForeArm": ["leftforearm", "left_forearm", "lowerarm_l", "forearm_l", "l_forearm"],
    "LeftHand": ["lefthand", "left_hand", "hand_l", "l_hand"],
    # Right arm
    "RightShoulder": ["rightshoulder", "right_shoulder", "shoulder_r", "clavicle_r", "r_clavicle"],
    "RightArm": ["rightarm", "right_arm", "upperarm_r", "arm_r", "r_upperarm"],
    "RightForeArm": ["rightforearm", "right_forearm", "lowerarm_r", "forearm_r", "r_forearm"],
    "RightHand": ["righthand", "right_hand", "hand_r", "r_hand"],
    # Left leg
    "LeftUpLeg": ["leftupleg", "left_upleg", "thigh_l", "upleg_l", "l_thigh"],
    "LeftLeg": ["leftleg", "left_leg", "calf_l", "shin_l", "l_calf"],
    "LeftFoot": ["leftfoot", "left_foot", "foot_l", "l_foot"],
    "LeftToeBase": ["lefttoebase", "left_toebase", "toe_l", "ball_l", "l_toe"],
    # Right leg
    "RightUpLeg": ["rightupleg", "right_upleg", "thigh_r", "upleg_r", "r_thigh"],
    "RightLeg": ["rightleg", "right_leg", "calf_r", "shin_r", "r_calf"],
    "RightFoot": ["rightfoot", "right_foot", "foot_r", "r_foot"],
    "RightToeBase": ["righttoebase", "right_toebase", "toe_r", "ball_r", "r_toe"],
}

FINGER_NAMES = ["Thumb", "Index", "Middle", "Ring", "Pinky"]
FINGER_SEGMENTS = 4

# Roles whose contains-match must never land on a finger bone
HAND_ROLES = ("LeftHand", "RightHand")
FINGER_KEYWORDS = ("thumb", "index", "middle", "ring", "pinky")


def _finger_patterns(side: str, finger: str, segment: int) -> list[str]:
    s = side[0].lower()
    f = finger.lower()
    return [
        f"{side.lower()}hand{f}{segment}",
        f"{side.lower()}_hand{f}{segment}",
        f"{f}_0{segment}_{s}",
        f"{f}{segment}_{s}",
        f"{s}_{f}{segment}",
        f"{f}_{segment}_{s}",
    ]


FINGER_ROLE_PATTERNS = {
    f"{side}Hand{finger}{segment}": _finger_patterns(side, finger, segment)
    for side in ("Left", "Right")
    for finger in FINGER_NAMES
    for segment in range(1, FINGER_SEGMENTS + 1)
}


# =============================================================================
# Rig Signatures
# =============================================================================

# Each signature is a list of requirements; a requirement holds alternative
# substrings, any of which must occur in the joined lowercase name list.
MIXAMO_PREFIX = "mixamorig:"
UE5_SIGNATURE = [("pelvis",), ("spine_01",), ("clavicle_l", "clavicle_r")]
UNITY_SIGNATURE = [("hips",), ("spine",), ("chest",), ("leftupperarm", "left upper arm")]
GENERIC_HUMANOID_SIGNATURE = [
    ("hips", "pelvis"),
    ("spine",),
    ("head", "neck"),
    ("arm", "shoulder"),
    ("leg", "thigh"),
]

# Proportion pairs (parent role, child role) used for the median scale estimate
SCALE_ROLE_PAIRS = [
    ("Hips", "Spine"),
    ("Spine", "Neck"),
    ("LeftArm", "LeftForeArm"),
    ("LeftForeArm", "LeftHand"),
    ("RightArm", "RightForeArm"),
    ("RightForeArm", "RightHand"),
    ("LeftUpLeg", "LeftLeg"),
    ("LeftLeg", "LeftFoot"),
    ("RightUpLeg", "RightLeg"),
    ("RightLeg", "RightFoot"),
]

# Bones inspected when classifying the reference pose
POSE_ROLES = (
    "Hips",
    "Spine",
    "Neck",
    "LeftUpLeg",
    "LeftFoot",
    "RightUpLeg",
    "RightFoot",
    "LeftArm",
    "LeftHand",
    "RightArm",
    "RightHand",
)
