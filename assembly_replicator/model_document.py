"""
model_document.py

Defines the ModelDocument class, the in-memory host model the replication
pipeline runs against.
It holds registries for all entities (Levels, AssemblyDefinitions, AssemblyInstances,
Members) and manages the relationships between them (definition of an instance,
ordered membership of members in instances) in dedicated internal registries.

Provides the host operations consumed by the pipeline: bounding box and membership
queries, comment/level writes, order-preserving bulk copy under a transform,
bounding-box search, and snapshot-based transactions.
"""

import os
import pickle
import uuid
import logging
from contextlib import contextmanager
from copy import deepcopy
from typing import Dict, List, Optional, Union, Type, TypeVar, Any, Sequence, Iterator

import numpy as np

from .cad_common import (
    BoundingBox, ModelEntity, HostOperationFailure, ModelConfigurationError,
    TransactionFailure
)
from .model_entities import (
    Level, AssemblyDefinition, AssemblyInstance, Member, Wall, CurveMember,
    PointMember, BoxMember, Region
)

logger = logging.getLogger(__name__)

# --- Type Hinting ---
EntityType = TypeVar('EntityType', bound=ModelEntity)
MemberType = TypeVar('MemberType', bound=Member)
# Type for identifiers (UUID, user identifier string, or entity object itself)
Identifiable = Union[str, uuid.UUID, ModelEntity]

# Attributes captured by a transaction snapshot
_STATE_ATTRIBUTES = (
    '_levels', '_definitions', '_instances', '_members',
    '_level_order', '_definition_order', '_instance_order', '_member_order',
    '_instance_definition', '_definition_instances',
    '_instance_members', '_member_instance',
    '_identifier_registry',
)


class ModelDocument:
    """
    Manages all entities and their relationships within a model.
    Acts as the central registry and source of truth for the model structure.
    """
    def __init__(self, model_name: str = "Model"):
        self.model_name: str = model_name

        # --- Entity Registries ---
        self._levels: Dict[uuid.UUID, Level] = {}
        self._definitions: Dict[uuid.UUID, AssemblyDefinition] = {}
        self._instances: Dict[uuid.UUID, AssemblyInstance] = {}
        self._members: Dict[uuid.UUID, Member] = {}

        # --- Ordering (creation order, used for deterministic enumeration) ---
        self._level_order: List[uuid.UUID] = []
        self._definition_order: List[uuid.UUID] = []
        self._instance_order: List[uuid.UUID] = []
        self._member_order: List[uuid.UUID] = []

        # --- Relationship Registries ---
        self._instance_definition: Dict[uuid.UUID, uuid.UUID] = {} # Instance UUID -> Definition UUID
        self._definition_instances: Dict[uuid.UUID, List[uuid.UUID]] = {} # Definition UUID -> ordered Instance UUIDs
        self._instance_members: Dict[uuid.UUID, List[uuid.UUID]] = {} # Instance UUID -> ordered Member UUIDs
        self._member_instance: Dict[uuid.UUID, uuid.UUID] = {} # Member UUID -> owning Instance UUID

        # Map user identifiers (must be unique) back to internal UUIDs
        self._identifier_registry: Dict[str, uuid.UUID] = {}

        # --- Transaction State ---
        self._transaction_name: Optional[str] = None
        self._transaction_snapshot: Optional[Dict[str, Any]] = None

        logger.info(f"Initialized ModelDocument: {self.model_name}")

    # --- Internal Helper: Identifier Resolution ---
    def _resolve_identifier(self, identifier: Optional[Identifiable],
                            expected_type: Optional[Type[EntityType]] = None) -> Optional[uuid.UUID]:
        """Resolves a string, UUID, or entity object to its internal UUID."""
        if identifier is None:
            return None

        target_uuid: Optional[uuid.UUID] = None
        if isinstance(identifier, uuid.UUID):
            target_uuid = identifier
        elif isinstance(identifier, str):
            target_uuid = self._identifier_registry.get(identifier)
            if target_uuid is None:
                logger.debug(f"Identifier string '{identifier}' not found in registry.")
                return None
        elif isinstance(identifier, ModelEntity):
            target_uuid = identifier.internal_id
        else:
            logger.error(f"Invalid identifier type: {type(identifier)}")
            return None

        entity = self._get_entity_by_uuid(target_uuid)
        if entity is None:
            logger.debug(f"Identifier '{identifier}' resolved to UUID {target_uuid}, but entity not found in registries.")
            return None
        if expected_type and not isinstance(entity, expected_type):
            logger.debug(f"Identifier '{identifier}' resolved to entity of type {type(entity).__name__}, but expected {expected_type.__name__}.")
            return None
        return target_uuid

    def _get_entity_by_uuid(self, entity_uuid: uuid.UUID) -> Optional[ModelEntity]:
        """Retrieves an entity directly by its UUID from any registry."""
        return (self._members.get(entity_uuid) or
                self._instances.get(entity_uuid) or
                self._definitions.get(entity_uuid) or
                self._levels.get(entity_uuid))

    # --- Internal Helper: Entity Registration ---
    def _register_entity(self, entity: EntityType, registry: Dict[uuid.UUID, EntityType],
                         order: List[uuid.UUID]) -> bool:
        """Adds an entity to its specific registry, its ordering list and the identifier lookup."""
        if not isinstance(entity, ModelEntity):
            logger.error(f"Attempted to register non-ModelEntity object: {entity}")
            return False
        if self._get_entity_by_uuid(entity.internal_id) is not None:
            logger.error(f"Entity with UUID {entity.internal_id} ('{entity.user_identifier}') already registered.")
            return False

        existing_uuid = self._identifier_registry.get(entity.user_identifier)
        if existing_uuid and existing_uuid != entity.internal_id:
            logger.error(f"User identifier '{entity.user_identifier}' is already used by entity {existing_uuid}. Cannot register {entity.internal_id}.")
            return False

        self._identifier_registry[entity.user_identifier] = entity.internal_id
        registry[entity.internal_id] = entity
        order.append(entity.internal_id)
        logger.debug(f"Registered {type(entity).__name__} '{entity.user_identifier}' ({entity.internal_id})")
        return True

    # --- Public API: Getters ---

    def get_entity(self, identifier: Identifiable) -> Optional[ModelEntity]:
        """Gets any entity by its identifier (UUID, user ID string, or object)."""
        entity_uuid = self._resolve_identifier(identifier)
        return self._get_entity_by_uuid(entity_uuid) if entity_uuid else None

    def get_member(self, identifier: Identifiable) -> Optional[Member]:
        entity_uuid = self._resolve_identifier(identifier, Member)
        return self._members.get(entity_uuid) if entity_uuid else None

    def get_instance(self, identifier: Identifiable) -> Optional[AssemblyInstance]:
        entity_uuid = self._resolve_identifier(identifier, AssemblyInstance)
        return self._instances.get(entity_uuid) if entity_uuid else None

    def get_definition(self, identifier: Identifiable) -> Optional[AssemblyDefinition]:
        entity_uuid = self._resolve_identifier(identifier, AssemblyDefinition)
        return self._definitions.get(entity_uuid) if entity_uuid else None

    def get_level(self, identifier: Identifiable) -> Optional[Level]:
        entity_uuid = self._resolve_identifier(identifier, Level)
        return self._levels.get(entity_uuid) if entity_uuid else None

    def list_members(self, category_id: Optional[int] = None) -> List[Member]:
        """Returns all members in creation order, optionally filtered by category."""
        members = [self._members[uid] for uid in self._member_order]
        if category_id is None:
            return members
        return [m for m in members if m.category_id == category_id]

    def list_instances(self) -> List[AssemblyInstance]:
        return [self._instances[uid] for uid in self._instance_order]

    def list_definitions(self) -> List[AssemblyDefinition]:
        return [self._definitions[uid] for uid in self._definition_order]

    def list_levels(self) -> List[Level]:
        return [self._levels[uid] for uid in self._level_order]

    def list_regions(self) -> List[Region]:
        return [m for m in self.list_members() if isinstance(m, Region)]

    # --- Public API: Relationship Queries ---

    def get_definition_of_instance(self, instance_identifier: Identifiable) -> Optional[AssemblyDefinition]:
        inst_uuid = self._resolve_identifier(instance_identifier, AssemblyInstance)
        def_uuid = self._instance_definition.get(inst_uuid) if inst_uuid else None
        return self._definitions.get(def_uuid) if def_uuid else None

    def get_instances_of_definition(self, definition_identifier: Identifiable) -> List[AssemblyInstance]:
        def_uuid = self._resolve_identifier(definition_identifier, AssemblyDefinition)
        if not def_uuid:
            return []
        return [self._instances[uid] for uid in self._definition_instances.get(def_uuid, [])]

    def get_instance_member_ids(self, instance_identifier: Identifiable) -> List[uuid.UUID]:
        """Ordered member ids of an instance."""
        inst_uuid = self._resolve_identifier(instance_identifier, AssemblyInstance)
        if not inst_uuid:
            return []
        return list(self._instance_members.get(inst_uuid, []))

    def get_instance_members(self, instance_identifier: Identifiable) -> List[Member]:
        return [self._members[uid] for uid in self.get_instance_member_ids(instance_identifier)]

    def get_owner_instance(self, member_identifier: Identifiable) -> Optional[AssemblyInstance]:
        member_uuid = self._resolve_identifier(member_identifier, Member)
        inst_uuid = self._member_instance.get(member_uuid) if member_uuid else None
        return self._instances.get(inst_uuid) if inst_uuid else None

    def get_instance_level(self, instance_identifier: Identifiable) -> Optional[Level]:
        """
        Resolves the level an instance sits on: the level of a region member first,
        then the level of any other member, then the level nearest to the anchor
        elevation.
        """
        instance = self.get_instance(instance_identifier)
        if not instance:
            return None
        members = self.get_instance_members(instance)
        for member in sorted(members, key=lambda m: not isinstance(m, Region)):
            level = self.get_level(member.level_id) if member.level_id else None
            if level:
                return level
        levels = self.list_levels()
        if not levels:
            return None
        return min(levels, key=lambda lvl: abs(lvl.elevation - instance.anchor[2]))

    # --- Public API: Relationship Management ---

    def add_member_to_instance(self, member_identifier: Identifiable, instance_identifier: Identifiable) -> bool:
        """Appends a member to an instance's ordered member list. A member belongs to at most one instance."""
        member_uuid = self._resolve_identifier(member_identifier, Member)
        inst_uuid = self._resolve_identifier(instance_identifier, AssemblyInstance)
        if not member_uuid or not inst_uuid:
            logger.error(f"Cannot add member '{member_identifier}' to instance '{instance_identifier}': not found.")
            return False
        current = self._member_instance.get(member_uuid)
        if current == inst_uuid:
            return True
        if current is not None:
            logger.error(f"Member '{member_identifier}' already belongs to instance {current}.")
            return False
        self._instance_members.setdefault(inst_uuid, []).append(member_uuid)
        self._member_instance[member_uuid] = inst_uuid
        return True

    # --- Public API: Entity Creation ---

    def add_level(self, identifier: str, elevation: float = 0.0) -> Optional[Level]:
        level = Level(user_identifier=identifier, elevation=float(elevation))
        if not self._register_entity(level, self._levels, self._level_order):
            return None
        logger.info(f"Added Level '{identifier}' at elevation {elevation}")
        return level

    def add_definition(self, identifier: str, description: str = "") -> Optional[AssemblyDefinition]:
        definition = AssemblyDefinition(user_identifier=identifier, description=description)
        if not self._register_entity(definition, self._definitions, self._definition_order):
            return None
        self._definition_instances[definition.internal_id] = []
        logger.info(f"Added AssemblyDefinition '{identifier}'")
        return definition

    def add_instance(self, definition: Identifiable, anchor: Sequence[float],
                     identifier: Optional[str] = None,
                     members: Optional[Sequence[Identifiable]] = None) -> Optional[AssemblyInstance]:
        """Creates an instance of a definition at anchor, optionally adopting existing members."""
        def_uuid = self._resolve_identifier(definition, AssemblyDefinition)
        if not def_uuid:
            logger.error(f"Definition identifier '{definition}' not found or invalid.")
            return None
        instance = AssemblyInstance(user_identifier=identifier or "", anchor=tuple(anchor))
        if not self._register_entity(instance, self._instances, self._instance_order):
            return None
        self._instance_definition[instance.internal_id] = def_uuid
        self._definition_instances.setdefault(def_uuid, []).append(instance.internal_id)
        self._instance_members[instance.internal_id] = []
        for member in members or []:
            self.add_member_to_instance(member, instance)
        logger.info(f"Added AssemblyInstance '{instance.user_identifier}' of '{self._definitions[def_uuid].name}' at {instance.anchor}")
        return instance

    def _add_member_internal(self, MemberClass: Type[MemberType],
                             identifier: Optional[str] = None,
                             instance: Optional[Identifiable] = None,
                             level: Optional[Identifiable] = None,
                             **kwargs) -> Optional[MemberType]:
        """Internal helper to create, register, and link a member."""
        # 1. Resolve optional relationships
        inst_uuid = self._resolve_identifier(instance, AssemblyInstance) if instance is not None else None
        if instance is not None and not inst_uuid:
            logger.error(f"Instance identifier '{instance}' not found or invalid.")
            return None
        level_uuid = self._resolve_identifier(level, Level) if level is not None else None
        if level is not None and not level_uuid:
            logger.error(f"Level identifier '{level}' not found or invalid.")
            return None

        # 2. Create the member
        try:
            member = MemberClass(user_identifier=identifier or "", level_id=level_uuid, **kwargs)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to instantiate {MemberClass.__name__} with identifier '{identifier}': {e}")
            return None

        # 3. Register and link
        if not self._register_entity(member, self._members, self._member_order):
            return None
        if inst_uuid:
            self.add_member_to_instance(member.internal_id, inst_uuid)
        logger.debug(f"Added {MemberClass.__name__} '{member.user_identifier}' ({member.internal_id})")
        return member

    # --- Public API: Concrete Member Adders ---

    def add_wall(self, start: Sequence[float], end: Sequence[float], height: Optional[float] = None,
                 category_id: int = 0, type_id: Optional[int] = None, comment: str = "",
                 identifier: Optional[str] = None, instance: Optional[Identifiable] = None,
                 level: Optional[Identifiable] = None) -> Optional[Wall]:
        return self._add_member_internal(Wall, identifier, instance, level, start=tuple(start), end=tuple(end),
                                         height=height, category_id=category_id, type_id=type_id, comment=comment)

    def add_curve_member(self, start: Sequence[float], end: Sequence[float],
                         category_id: int = 0, type_id: Optional[int] = None, comment: str = "",
                         identifier: Optional[str] = None, instance: Optional[Identifiable] = None,
                         level: Optional[Identifiable] = None) -> Optional[CurveMember]:
        return self._add_member_internal(CurveMember, identifier, instance, level, start=tuple(start), end=tuple(end),
                                         category_id=category_id, type_id=type_id, comment=comment)

    def add_point_member(self, location: Sequence[float],
                         category_id: int = 0, type_id: Optional[int] = None, comment: str = "",
                         identifier: Optional[str] = None, instance: Optional[Identifiable] = None,
                         level: Optional[Identifiable] = None) -> Optional[PointMember]:
        return self._add_member_internal(PointMember, identifier, instance, level, location=tuple(location),
                                         category_id=category_id, type_id=type_id, comment=comment)

    def add_box_member(self, min_corner: Sequence[float], max_corner: Sequence[float],
                       category_id: int = 0, type_id: Optional[int] = None, comment: str = "",
                       identifier: Optional[str] = None, instance: Optional[Identifiable] = None,
                       level: Optional[Identifiable] = None) -> Optional[BoxMember]:
        return self._add_member_internal(BoxMember, identifier, instance, level, min_corner=tuple(min_corner),
                                         max_corner=tuple(max_corner), category_id=category_id,
                                         type_id=type_id, comment=comment)

    def add_region(self, boundary: Sequence[Sequence[float]], level: Optional[Identifiable] = None,
                   height: float = 10.0, elevation: Optional[float] = None, bounded: bool = True,
                   category_id: int = 0, type_id: Optional[int] = None, comment: str = "",
                   identifier: Optional[str] = None, instance: Optional[Identifiable] = None) -> Optional[Region]:
        """Adds a region. Its base elevation defaults to the elevation of its level."""
        if elevation is None:
            level_entity = self.get_level(level) if level is not None else None
            elevation = level_entity.elevation if level_entity else 0.0
        return self._add_member_internal(Region, identifier, instance, level,
                                         boundary=[(p[0], p[1]) for p in boundary], elevation=float(elevation),
                                         height=float(height), bounded=bounded, category_id=category_id,
                                         type_id=type_id, comment=comment)

    # --- Public API: Entity Removal ---

    def remove_member(self, identifier: Identifiable) -> bool:
        member_uuid = self._resolve_identifier(identifier, Member)
        if not member_uuid:
            logger.warning(f"Attempted to remove non-existent member '{identifier}'")
            return False
        member = self._members.pop(member_uuid)
        self._member_order.remove(member_uuid)
        inst_uuid = self._member_instance.pop(member_uuid, None)
        if inst_uuid:
            self._instance_members[inst_uuid].remove(member_uuid)
        if self._identifier_registry.get(member.user_identifier) == member_uuid:
            self._identifier_registry.pop(member.user_identifier, None)
        logger.debug(f"Removed {type(member).__name__} '{member.user_identifier}' ({member_uuid})")
        return True

    # --- Public API: Attributes ---

    def get_comment(self, member_identifier: Identifiable) -> str:
        member = self.get_member(member_identifier)
        if not member:
            raise HostOperationFailure(f"Cannot read comment of unknown member '{member_identifier}'")
        return member.comment

    def set_comment(self, member_identifier: Identifiable, comment: str) -> None:
        member = self.get_member(member_identifier)
        if not member:
            raise HostOperationFailure(f"Cannot write comment of unknown member '{member_identifier}'")
        member.comment = comment

    def set_level(self, member_identifier: Identifiable, level_identifier: Optional[Identifiable]) -> None:
        member = self.get_member(member_identifier)
        if not member:
            raise HostOperationFailure(f"Cannot assign level to unknown member '{member_identifier}'")
        if level_identifier is None:
            member.level_id = None
            return
        level_uuid = self._resolve_identifier(level_identifier, Level)
        if not level_uuid:
            raise HostOperationFailure(f"Level '{level_identifier}' not found")
        member.level_id = level_uuid

    # --- Public API: Bounding Box ---

    def get_bounding_box(self, identifier: Identifiable) -> BoundingBox:
        """
        Bounding box of a member, or of an instance (union of its members' boxes).
        Returns an invalid BoundingBox for unknown identifiers and empty instances.
        """
        entity = self.get_entity(identifier)
        if isinstance(entity, Member):
            return entity.get_bounding_box()
        if isinstance(entity, AssemblyInstance):
            overall_bb = BoundingBox()
            for member in self.get_instance_members(entity):
                overall_bb = overall_bb.union(member.get_bounding_box())
            return overall_bb
        logger.debug(f"No bounding box for '{identifier}'")
        return BoundingBox()

    def find_members_intersecting(self, box: BoundingBox, category_id: Optional[int] = None,
                                  exclude: Optional[Sequence[uuid.UUID]] = None) -> List[Member]:
        """Members whose bounding box intersects box, optionally filtered by category."""
        excluded = set(exclude or [])
        found = []
        for member in self.list_members(category_id):
            if member.internal_id in excluded:
                continue
            if member.get_bounding_box().intersects(box):
                found.append(member)
        return found

    # --- Public API: Copying ---

    def copy_members(self, member_ids: Sequence[Identifiable], matrix: np.ndarray) -> List[uuid.UUID]:
        """
        Copies members under a 4x4 transform in one operation.
        The returned ids are order-correlated with member_ids. Copies are free
        members (not part of any instance) and keep the source level and comment.
        Raises HostOperationFailure without copying anything if any id is unknown.
        """
        if not isinstance(matrix, np.ndarray) or matrix.shape != (4, 4):
            raise HostOperationFailure(f"Copy transform must be a 4x4 matrix, got {getattr(matrix, 'shape', type(matrix))}")

        sources: List[Member] = []
        for identifier in member_ids:
            member = self.get_member(identifier)
            if member is None:
                raise HostOperationFailure(f"Cannot copy unknown member '{identifier}'")
            sources.append(member)

        new_ids: List[uuid.UUID] = []
        for source in sources:
            copy = deepcopy(source)
            copy.internal_id = uuid.uuid4()
            copy.user_identifier = f"{source.user_identifier}_copy_{copy.internal_id.hex[:6]}"
            copy.bake_geometry(matrix)
            if not self._register_entity(copy, self._members, self._member_order):
                raise HostOperationFailure(f"Failed to register copy of '{source.user_identifier}'")
            new_ids.append(copy.internal_id)
        logger.debug(f"Copied {len(new_ids)} member(s)")
        return new_ids

    # --- Public API: Transactions ---

    @property
    def in_transaction(self) -> bool:
        return self._transaction_snapshot is not None

    def begin_transaction(self, name: str) -> None:
        if self.in_transaction:
            raise TransactionFailure(f"Cannot start '{name}': transaction '{self._transaction_name}' is already open")
        self._transaction_snapshot = deepcopy({attr: getattr(self, attr) for attr in _STATE_ATTRIBUTES})
        self._transaction_name = name
        logger.debug(f"Transaction '{name}' started")

    def commit_transaction(self) -> None:
        if not self.in_transaction:
            raise TransactionFailure("No open transaction to commit")
        logger.debug(f"Transaction '{self._transaction_name}' committed")
        self._transaction_snapshot = None
        self._transaction_name = None

    def rollback_transaction(self) -> None:
        """Restores the registries captured when the transaction began."""
        if not self.in_transaction:
            raise TransactionFailure("No open transaction to roll back")
        for attr, value in self._transaction_snapshot.items():
            setattr(self, attr, value)
        logger.warning(f"Transaction '{self._transaction_name}' rolled back")
        self._transaction_snapshot = None
        self._transaction_name = None

    @contextmanager
    def transaction(self, name: str) -> Iterator["ModelDocument"]:
        """
        Commits on normal exit. Any exception rolls everything back; ordinary
        exceptions are re-raised as TransactionFailure, interrupts unchanged.
        Entity objects fetched inside a rolled-back transaction are stale afterwards.
        """
        self.begin_transaction(name)
        try:
            yield self
        except Exception as e:
            self.rollback_transaction()
            raise TransactionFailure(f"Transaction '{name}' rolled back: {e}") from e
        except BaseException:
            self.rollback_transaction()
            raise
        else:
            self.commit_transaction()

    # --- Persistence ---

    def save_state(self, file_path: str) -> None:
        """Saves the entire model state (including registries) to a pickle file."""
        if self.in_transaction:
            raise TransactionFailure("Cannot save model state while a transaction is open")
        output_dir = os.path.dirname(file_path)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)
        try:
            with open(file_path, 'wb') as f:
                pickle.dump(self, f, pickle.HIGHEST_PROTOCOL)
            logger.info(f"Model state saved to {file_path}")
        except (OSError, pickle.PicklingError) as e:
            logger.error(f"Error saving model state to {file_path}: {e}")
            raise

    @staticmethod
    def load_state(file_path: str) -> Optional["ModelDocument"]:
        """Loads a model state from a pickle file."""
        if not os.path.exists(file_path):
            logger.error(f"Model state file not found: {file_path}")
            return None
        try:
            with open(file_path, 'rb') as f:
                document = pickle.load(f)
        except (OSError, pickle.UnpicklingError, EOFError) as e:
            logger.error(f"Error unpickling model state from {file_path}: {e}")
            return None
        if not isinstance(document, ModelDocument):
            logger.error(f"File {file_path} did not contain a valid ModelDocument object.")
            return None
        logger.info(f"Loaded model state '{document.model_name}' from {file_path}")
        return document

    # --- Validation ---

    def validate(self) -> None:
        """Raises ModelConfigurationError when relationship registries disagree."""
        for inst_uuid, member_ids in self._instance_members.items():
            if inst_uuid not in self._instances:
                raise ModelConfigurationError(f"Membership registered for unknown instance {inst_uuid}")
            for member_uuid in member_ids:
                if self._member_instance.get(member_uuid) != inst_uuid:
                    raise ModelConfigurationError(f"Member {member_uuid} is listed in instance {inst_uuid} but owned elsewhere")
        for inst_uuid in self._instances:
            if inst_uuid not in self._instance_definition:
                raise ModelConfigurationError(f"Instance {inst_uuid} has no definition")
