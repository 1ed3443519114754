from convoflow import build_flow_view, forest_to_dot, load_conversations
from convoflow.visualize import print_statistics, visualize_forest_ascii

print("Loading conversations...")
conversations = load_conversations('data/convos_withloop.json')

print(f"Loaded {len(conversations)} conversations")

# Build the flow view with loop folding
print("\nBuilding flow view...")
forest = build_flow_view(conversations, detect_loops=True, summarize_multi_steps=False)

print(visualize_forest_ascii(forest))
print()
print_statistics(forest)
print()
print(forest_to_dot(forest))
